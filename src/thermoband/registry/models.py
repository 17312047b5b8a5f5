from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
import re

# Allowed device sampling periods, in seconds (5 min, 15 min, 30 min, 1 h, 6 h).
SAMPLE_INTERVALS = (300, 900, 1800, 3600, 21600)

_MAC_RE = re.compile(r"^[0-9A-F]{2}(:[0-9A-F]{2}){5}$")


def normalize_mac(mac_address: str) -> str:
    """Return the canonical ``AA:BB:CC:DD:EE:FF`` form or raise ValueError."""
    if mac_address is None:
        raise ValueError("MAC address is required")
    mac = str(mac_address).strip().upper().replace("-", ":")
    if not _MAC_RE.match(mac):
        raise ValueError(f"Invalid MAC address: {mac_address!r}")
    return mac


class BindingState(str, Enum):
    UNBOUND = "unbound"
    BOUND_NO_INTERVAL = "bound_no_interval"
    BOUND_CONFIGURED = "bound_configured"


@dataclass
class Patient:
    patient_id: str
    name: str
    age: int
    owner_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "patientId": self.patient_id,
            "name": self.name,
            "age": self.age,
            "ownerId": self.owner_id,
        }

    @staticmethod
    def from_dict(payload: Dict) -> "Patient":
        # the hosted backend still emits patientid
        patient_id = payload.get("patientId", payload.get("patientid"))
        if patient_id is None or patient_id == "":
            raise ValueError(f"Patient record without an id: {payload!r}")
        return Patient(
            patient_id=str(patient_id),
            name=str(payload.get("name", "")),
            age=int(payload.get("age", 0)),
            owner_id=payload.get("ownerId"),
        )


@dataclass(frozen=True)
class Binding:
    """Immutable binding value; every transition produces a new one.

    The state tag is derived from which fields are set, so a binding can never
    carry an interval without a device.
    """

    patient_id: str
    mac_address: Optional[str] = None
    sample_interval_seconds: Optional[int] = None

    def __post_init__(self):
        if self.mac_address is None and self.sample_interval_seconds is not None:
            raise ValueError("sample interval requires a bound device")

    @property
    def state(self) -> BindingState:
        if self.mac_address is None:
            return BindingState.UNBOUND
        if self.sample_interval_seconds is None:
            return BindingState.BOUND_NO_INTERVAL
        return BindingState.BOUND_CONFIGURED

    @property
    def is_bound(self) -> bool:
        return self.mac_address is not None

    def to_dict(self) -> Dict:
        return {
            "patientId": self.patient_id,
            "macAddress": self.mac_address,
            "sampleIntervalSeconds": self.sample_interval_seconds,
            "state": self.state.value,
        }

    @staticmethod
    def from_dict(payload: Dict) -> "Binding":
        interval = payload.get("sampleIntervalSeconds")
        mac = payload.get("macAddress")
        return Binding(
            patient_id=str(payload.get("patientId")),
            mac_address=normalize_mac(mac) if mac else None,
            sample_interval_seconds=int(interval) if interval is not None else None,
        )


@dataclass
class Device:
    mac_address: str
    label: Optional[str] = None

    def to_dict(self) -> Dict:
        return {"macAddress": self.mac_address, "label": self.label}

    @staticmethod
    def from_dict(payload: Dict) -> "Device":
        return Device(
            mac_address=normalize_mac(payload.get("macAddress")),
            label=payload.get("label"),
        )
