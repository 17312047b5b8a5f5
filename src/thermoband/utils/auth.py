import os
from fastapi import Header, HTTPException, status

from ..security.credentials import Credential


def require_credential(authorization: str | None = Header(default=None)) -> Credential:
    """Extract the caller's bearer credential.

    Tokens are issued and verified by the external identity provider. When
    ``TB_API_TOKEN`` is set the bearer must match it exactly (service
    deployments without an identity provider).
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    expected = os.getenv("TB_API_TOKEN")
    if expected and token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return Credential.from_bearer(token)
