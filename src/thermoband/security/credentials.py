from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import base64
import binascii
import json


@dataclass(frozen=True)
class Credential:
    """Opaque bearer credential issued by the external identity provider.

    It is passed explicitly to every boundary call; nothing in the package
    keeps a "current" token around. ``subject`` identifies the hospital
    account and is read from the token claims without verification, since
    verification belongs to the identity provider.
    """

    token: str
    subject: Optional[str] = None

    @classmethod
    def from_bearer(cls, token: str) -> "Credential":
        return cls(token=token, subject=subject_from_token(token))

    def auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    def __repr__(self) -> str:
        return f"Credential(subject={self.subject!r})"


def subject_from_token(token: str) -> Optional[str]:
    """Return the ``sub`` (or ``user_id``/``id``) claim of a JWT, if any."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeEncodeError):
        return None
    if not isinstance(claims, dict):
        return None
    for key in ("sub", "user_id", "id"):
        if claims.get(key):
            return str(claims[key])
    return None
