"""HTTP boundary for the Thermoband backend.

All network I/O lives here. Fetches either return complete data or raise
``FetchError``; an empty list always means the backend answered with no rows.
Reads are retried with backoff on connection errors and 5xx responses;
writes are sent once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
import time

import requests

from ..config import ThermobandConfig
from ..errors import ERRORS_BY_CODE, NotFoundError
from ..registry.models import Binding, Device, Patient, normalize_mac
from ..security.credentials import Credential
from ..telemetry.samples import TemperatureSample

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """The backend could not be reached or answered with an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class BackoffPolicy:
    base: float = 0.5
    factor: float = 2.0
    max_backoff: float = 8.0
    max_retries: int = 3

    def delays(self):
        delay = self.base
        for _ in range(self.max_retries):
            yield delay
            delay = min(self.max_backoff, delay * self.factor)


class BackendClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        backoff: BackoffPolicy | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.backoff = backoff or BackoffPolicy()
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: ThermobandConfig) -> "BackendClient":
        return cls(
            cfg.api_base_url,
            timeout=cfg.request_timeout_seconds,
            backoff=BackoffPolicy(max_retries=cfg.max_retries),
        )

    def _raise_for_error(self, resp: requests.Response) -> None:
        if resp.ok:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = body.get("error") if isinstance(body, dict) else None
        code = body.get("code") if isinstance(body, dict) else None
        error_cls = ERRORS_BY_CODE.get(code)
        if error_cls is None and resp.status_code == 404:
            error_cls = NotFoundError
        if error_cls is not None:
            raise error_cls(message or resp.reason)
        raise FetchError(
            f"Request to {resp.url} failed: {resp.status_code} {message or resp.reason}",
            status_code=resp.status_code,
        )

    def _send(self, method: str, endpoint: str, credential: Credential, **kwargs) -> requests.Response:
        try:
            return self.session.request(
                method,
                f"{self.base_url}{endpoint}",
                headers=credential.auth_header(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise FetchError(f"{method} {endpoint} failed: {e}") from e

    def get(self, endpoint: str, credential: Credential, params: Optional[Dict[str, Any]] = None) -> Any:
        last_error: FetchError | None = None
        for delay in [0.0, *self.backoff.delays()]:
            if delay:
                time.sleep(delay)
            try:
                resp = self._send("GET", endpoint, credential, params=params)
            except FetchError as e:
                last_error = e
                logger.warning("GET %s retry after error: %s", endpoint, e)
                continue
            if resp.status_code >= 500:
                last_error = FetchError(f"GET {endpoint} returned {resp.status_code}", status_code=resp.status_code)
                logger.warning("GET %s retry after status %s", endpoint, resp.status_code)
                continue
            self._raise_for_error(resp)
            try:
                return resp.json()
            except ValueError as e:
                raise FetchError(f"GET {endpoint} returned invalid JSON") from e
        raise last_error

    def send(self, method: str, endpoint: str, credential: Credential, payload: Any = None) -> Any:
        resp = self._send(method, endpoint, credential, json=payload)
        self._raise_for_error(resp)
        try:
            return resp.json()
        except ValueError as e:
            raise FetchError(f"{method} {endpoint} returned invalid JSON") from e

    # Inbound data

    def fetch_patients(self, credential: Credential) -> List[Patient]:
        rows = self._expect_list(self.get("/patients", credential), "/patients")
        try:
            return [Patient.from_dict(p) for p in rows]
        except (AttributeError, TypeError, ValueError) as e:
            raise FetchError(f"GET /patients returned malformed patients: {e}") from e

    def fetch_temperatures(self, credential: Credential, patient_id: Optional[str] = None) -> List[TemperatureSample]:
        endpoint = "/temperatures" if patient_id is None else f"/temperatures/{patient_id}"
        rows = self._expect_list(self.get(endpoint, credential), endpoint)
        try:
            return [TemperatureSample.from_dict(r) for r in rows]
        except (TypeError, ValueError) as e:
            raise FetchError(f"GET {endpoint} returned malformed samples: {e}") from e

    def fetch_binding(self, credential: Credential, patient_id: str) -> Binding:
        return Binding.from_dict(self.get(f"/devicepatient/{patient_id}", credential))

    def fetch_unassigned_devices(self, credential: Credential) -> List[Device]:
        rows = self._expect_list(self.get("/devices/unassigned", credential), "/devices/unassigned")
        return [Device.from_dict(d) for d in rows]

    @staticmethod
    def _expect_list(payload: Any, endpoint: str) -> list:
        if not isinstance(payload, list):
            raise FetchError(f"GET {endpoint} returned {type(payload).__name__}, expected a list")
        return payload


class RemoteRegistry:
    """Registry contract over HTTP, so a lifecycle manager can drive a remote registry.

    The credential passed to each call is forwarded as the bearer token;
    calls without one are refused.
    """

    def __init__(self, client: BackendClient):
        self.client = client

    @staticmethod
    def _require(credential: Credential | None) -> Credential:
        if credential is None:
            raise ValueError("RemoteRegistry calls require a credential")
        return credential

    def get_binding(self, patient_id: str, credential: Credential | None = None) -> Binding:
        return self.client.fetch_binding(self._require(credential), patient_id)

    def binding_for_mac(self, mac_address: str, credential: Credential | None = None) -> Optional[Binding]:
        cred = self._require(credential)
        mac = normalize_mac(mac_address)
        if any(d.mac_address == mac for d in self.client.fetch_unassigned_devices(cred)):
            return None
        for patient in self.client.fetch_patients(cred):
            binding = self.client.fetch_binding(cred, patient.patient_id)
            if binding.mac_address == mac:
                return binding
        # bound to a patient outside this account, or not provisioned at all
        raise NotFoundError(f"Device {mac} is not visible to this account", macAddress=mac)

    def bind(self, patient_id: str, mac_address: str, credential: Credential | None = None) -> Binding:
        payload = self.client.send(
            "POST",
            "/patients/assign-device",
            self._require(credential),
            {"patientId": str(patient_id), "macAddress": normalize_mac(mac_address)},
        )
        return Binding.from_dict(payload)

    def configure_interval(self, mac_address: str, seconds: int, credential: Credential | None = None) -> Binding:
        payload = self.client.send(
            "POST",
            f"/devices/{normalize_mac(mac_address)}/interval",
            self._require(credential),
            {"sampleIntervalSeconds": seconds},
        )
        return Binding.from_dict(payload)

    def release(self, mac_address: str, credential: Credential | None = None) -> Optional[Binding]:
        payload = self.client.send(
            "POST", f"/devices/{normalize_mac(mac_address)}/reset", self._require(credential)
        )
        if not payload.get("released"):
            return None
        return Binding.from_dict(payload["binding"])

    def remove_patient(self, patient_id: str, credential: Credential | None = None) -> Patient:
        cred = self._require(credential)
        try:
            patient = Patient.from_dict(self.client.get(f"/patients/{patient_id}", cred)["patient"])
        except (KeyError, TypeError) as e:
            raise FetchError(f"GET /patients/{patient_id} returned no patient") from e
        self.client.send("DELETE", f"/patients/{patient_id}", cred)
        return patient
