from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional
import json
import logging
import os
import tempfile
import threading
import uuid

from ..errors import ConflictError, InvalidIntervalError, NotBoundError, NotFoundError
from ..security.credentials import Credential
from .models import SAMPLE_INTERVALS, Binding, Device, Patient, normalize_mac

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _RegistryState:
    """One published version of the registry. Never mutated once published."""

    patients: Dict[str, Patient] = field(default_factory=dict)
    devices: Dict[str, Device] = field(default_factory=dict)
    bindings: Dict[str, Binding] = field(default_factory=dict)  # patient_id -> active binding
    by_mac: Dict[str, str] = field(default_factory=dict)  # mac -> patient_id

    def evolve(self, patients=None, devices=None, bindings=None) -> "_RegistryState":
        bindings = self.bindings if bindings is None else bindings
        return _RegistryState(
            patients=self.patients if patients is None else patients,
            devices=self.devices if devices is None else devices,
            bindings=bindings,
            by_mac={b.mac_address: pid for pid, b in bindings.items()},
        )

    def to_dict(self) -> Dict:
        return {
            "patients": [p.to_dict() for p in self.patients.values()],
            "devices": [d.to_dict() for d in self.devices.values()],
            "bindings": [b.to_dict() for b in self.bindings.values()],
        }


class DeviceRegistry:
    """Patients, devices and their bindings, optionally backed by a JSON file.

    This is the registry the lifecycle manager talks to when running in
    process. Each mutation is an atomic check-and-set under one internal lock,
    so the registry keeps its own invariants even without a lifecycle manager
    in front of it: a MAC address is bound to at most one patient, a patient
    holds at most one device, and a bound patient cannot be removed.

    Mutations build a new state, persist it, and only then publish it, so a
    failed write leaves the previous state untouched. Readers take the
    published state without locking.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._state = _RegistryState()
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    # Persistence helpers

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        patients = {}
        for p in payload.get("patients", []):
            patient = Patient.from_dict(p)
            patients[patient.patient_id] = patient
        devices = {}
        for d in payload.get("devices", []):
            device = Device.from_dict(d)
            devices[device.mac_address] = device
        bindings = {}
        for b in payload.get("bindings", []):
            binding = Binding.from_dict(b)
            if binding.is_bound:
                bindings[binding.patient_id] = binding
        self._state = _RegistryState().evolve(patients, devices, bindings)
        logger.info(
            "Loaded registry %s: %d patients, %d devices, %d bindings",
            self.path,
            len(patients),
            len(devices),
            len(bindings),
        )

    def _save(self, state: _RegistryState) -> None:
        if self.path is None:
            return
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _commit(self, state: _RegistryState) -> None:
        # caller holds self._lock
        self._save(state)
        self._state = state

    # Patient operations

    def create_patient(self, name: str, age: int, owner_id: Optional[str] = None) -> Patient:
        name = (name or "").strip()
        if not name:
            raise ValueError("Patient name is required")
        if isinstance(age, bool) or not isinstance(age, int) or age < 0:
            raise ValueError("Patient age must be a non-negative integer")
        patient = Patient(patient_id=str(uuid.uuid4()), name=name, age=age, owner_id=owner_id)
        with self._lock:
            state = self._state
            self._commit(state.evolve(patients={**state.patients, patient.patient_id: patient}))
        return patient

    def get_patient(self, patient_id: str) -> Optional[Patient]:
        return self._state.patients.get(str(patient_id))

    def list_patients(self, owner_id: Optional[str] = None) -> List[Patient]:
        patients = list(self._state.patients.values())
        if owner_id is None:
            return patients
        return [p for p in patients if p.owner_id == owner_id]

    # Device operations

    def add_device(self, mac_address: str, label: Optional[str] = None) -> Device:
        mac = normalize_mac(mac_address)
        with self._lock:
            state = self._state
            if mac in state.devices:
                raise ConflictError(f"Device {mac} is already provisioned", macAddress=mac)
            device = Device(mac_address=mac, label=label)
            self._commit(state.evolve(devices={**state.devices, mac: device}))
        return device

    def get_device(self, mac_address: str) -> Optional[Device]:
        return self._state.devices.get(normalize_mac(mac_address))

    def list_devices(self) -> List[Device]:
        return list(self._state.devices.values())

    def list_unassigned_devices(self) -> List[Device]:
        state = self._state
        return [d for mac, d in state.devices.items() if mac not in state.by_mac]

    # Binding lookups

    def get_binding(self, patient_id: str, credential: Credential | None = None) -> Binding:
        patient_id = str(patient_id)
        state = self._state
        if patient_id not in state.patients:
            raise NotFoundError(f"Unknown patient {patient_id}", patientId=patient_id)
        return state.bindings.get(patient_id) or Binding(patient_id=patient_id)

    def binding_for_mac(self, mac_address: str, credential: Credential | None = None) -> Optional[Binding]:
        mac = normalize_mac(mac_address)
        state = self._state
        if mac not in state.devices:
            raise NotFoundError(f"Unknown device {mac}", macAddress=mac)
        patient_id = state.by_mac.get(mac)
        if patient_id is None:
            return None
        return state.bindings[patient_id]

    # Outbound registry contract: bind / configure_interval / release / remove_patient

    def bind(self, patient_id: str, mac_address: str, credential: Credential | None = None) -> Binding:
        patient_id = str(patient_id)
        mac = normalize_mac(mac_address)
        with self._lock:
            state = self._state
            if patient_id not in state.patients:
                raise NotFoundError(f"Unknown patient {patient_id}", patientId=patient_id)
            if mac not in state.devices:
                raise NotFoundError(f"Unknown device {mac}", macAddress=mac)
            holder = state.by_mac.get(mac)
            if holder is not None:
                raise ConflictError(
                    f"Device {mac} is already bound to patient {holder}",
                    macAddress=mac,
                    patientId=holder,
                )
            if patient_id in state.bindings:
                raise ConflictError(
                    f"Patient {patient_id} already has device {state.bindings[patient_id].mac_address}",
                    patientId=patient_id,
                )
            binding = Binding(patient_id=patient_id, mac_address=mac)
            self._commit(state.evolve(bindings={**state.bindings, patient_id: binding}))
        return binding

    def configure_interval(self, mac_address: str, seconds: int, credential: Credential | None = None) -> Binding:
        mac = normalize_mac(mac_address)
        with self._lock:
            state = self._state
            if mac not in state.devices:
                raise NotFoundError(f"Unknown device {mac}", macAddress=mac)
            if seconds not in SAMPLE_INTERVALS:
                raise InvalidIntervalError(
                    f"Interval {seconds}s is not one of {SAMPLE_INTERVALS}", seconds=seconds
                )
            patient_id = state.by_mac.get(mac)
            if patient_id is None:
                raise NotBoundError(f"Device {mac} is not bound to a patient", macAddress=mac)
            binding = replace(state.bindings[patient_id], sample_interval_seconds=seconds)
            self._commit(state.evolve(bindings={**state.bindings, patient_id: binding}))
        return binding

    def release(self, mac_address: str, credential: Credential | None = None) -> Optional[Binding]:
        """Clear the device's binding; returns the released binding or None if it was free."""
        mac = normalize_mac(mac_address)
        with self._lock:
            state = self._state
            if mac not in state.devices:
                raise NotFoundError(f"Unknown device {mac}", macAddress=mac)
            patient_id = state.by_mac.get(mac)
            if patient_id is None:
                return None
            released = state.bindings[patient_id]
            bindings = {pid: b for pid, b in state.bindings.items() if pid != patient_id}
            self._commit(state.evolve(bindings=bindings))
        return released

    def remove_patient(self, patient_id: str, credential: Credential | None = None) -> Patient:
        patient_id = str(patient_id)
        with self._lock:
            state = self._state
            patient = state.patients.get(patient_id)
            if patient is None:
                raise NotFoundError(f"Unknown patient {patient_id}", patientId=patient_id)
            if patient_id in state.bindings:
                raise ConflictError(
                    f"Patient {patient_id} still holds device {state.bindings[patient_id].mac_address}",
                    patientId=patient_id,
                )
            patients = {pid: p for pid, p in state.patients.items() if pid != patient_id}
            self._commit(state.evolve(patients=patients))
        return patient
