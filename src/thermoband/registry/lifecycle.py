"""Device binding lifecycle.

A patient's binding moves through three states::

    UNBOUND --assign--> BOUND_NO_INTERVAL --set_interval--> BOUND_CONFIGURED
       ^                        |                                 |
       +---------reset----------+------------reset----------------+

``delete_patient`` is legal from every state and performs an implicit reset
before the patient is removed, so no device ever points at a deleted patient.

Transitions are serialized per MAC address and per patient. Locks are always
taken device first, then patient.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Protocol
import logging

from ..errors import ConflictError, InvalidIntervalError, NotBoundError, ThermobandError
from ..security.credentials import Credential
from ..utils.audit import NDJSONAuditLogger, make_audit_record
from ..utils.locks import KeyedLocks
from .models import SAMPLE_INTERVALS, Binding, Patient, normalize_mac

logger = logging.getLogger(__name__)


class RegistryBackend(Protocol):
    """Registry contract used by the lifecycle manager.

    Implemented in process by ``DeviceRegistry`` and over HTTP by
    ``RemoteRegistry``.
    """

    def get_binding(self, patient_id: str, credential: Credential | None = None) -> Binding: ...

    def binding_for_mac(self, mac_address: str, credential: Credential | None = None) -> Optional[Binding]: ...

    def bind(self, patient_id: str, mac_address: str, credential: Credential | None = None) -> Binding: ...

    def configure_interval(self, mac_address: str, seconds: int, credential: Credential | None = None) -> Binding: ...

    def release(self, mac_address: str, credential: Credential | None = None) -> Optional[Binding]: ...

    def remove_patient(self, patient_id: str, credential: Credential | None = None) -> Patient: ...


def validate_interval(seconds) -> int:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds not in SAMPLE_INTERVALS:
        raise InvalidIntervalError(
            f"Interval {seconds!r}s is not one of {SAMPLE_INTERVALS}", seconds=seconds
        )
    return int(seconds)


class DeviceLifecycleManager:
    def __init__(self, registry: RegistryBackend, audit: NDJSONAuditLogger | None = None):
        self.registry = registry
        self.audit = audit
        self._locks = KeyedLocks()

    @contextmanager
    def _transition(self, action: str, resource: str) -> Iterator[None]:
        try:
            yield
        except ThermobandError as e:
            logger.warning("Rejected %s on %s: %s", action, resource, e.message)
            raise

    def _record(self, credential: Credential | None, action: str, resource: str, details: dict) -> None:
        logger.info("%s %s %s", action, resource, details)
        if self.audit is None:
            return
        actor = credential.subject if credential is not None else None
        self.audit.append(make_audit_record(actor, action, resource, details))

    def state_of(self, patient_id: str, credential: Credential | None = None) -> Binding:
        """Current binding projection for a patient (UNBOUND when no device)."""
        return self.registry.get_binding(str(patient_id), credential=credential)

    def assign(self, patient_id: str, mac_address: str, credential: Credential | None = None) -> Binding:
        patient_id = str(patient_id)
        mac = normalize_mac(mac_address)
        with self._transition("assign", mac), self._locks.hold(("mac", mac), ("patient", patient_id)):
            # both lookups raise NotFoundError before any conflict is reported
            current = self.registry.get_binding(patient_id, credential=credential)
            holder = self.registry.binding_for_mac(mac, credential=credential)
            if current.is_bound:
                raise ConflictError(
                    f"Patient {patient_id} already has device {current.mac_address}; reset it first",
                    patientId=patient_id,
                )
            if holder is not None:
                raise ConflictError(
                    f"Device {mac} is already bound to patient {holder.patient_id}",
                    macAddress=mac,
                    patientId=holder.patient_id,
                )
            binding = self.registry.bind(patient_id, mac, credential=credential)
            self._record(credential, "assign", mac, {"patientId": patient_id})
        return binding

    def set_interval(self, mac_address: str, seconds: int, credential: Credential | None = None) -> Binding:
        mac = normalize_mac(mac_address)
        with self._transition("set_interval", mac), self._locks.hold(("mac", mac)):
            binding = self.registry.binding_for_mac(mac, credential=credential)
            seconds = validate_interval(seconds)
            if binding is None:
                raise NotBoundError(f"Device {mac} is not bound to a patient", macAddress=mac)
            with self._locks.hold(("patient", binding.patient_id)):
                updated = self.registry.configure_interval(mac, seconds, credential=credential)
            self._record(
                credential,
                "set_interval",
                mac,
                {"patientId": updated.patient_id, "sampleIntervalSeconds": seconds},
            )
        return updated

    def reset(self, mac_address: str, credential: Credential | None = None) -> Optional[Binding]:
        """Release a device. Returns the patient's now-unbound binding, or None
        when the device was already free."""
        mac = normalize_mac(mac_address)
        with self._transition("reset", mac), self._locks.hold(("mac", mac)):
            binding = self.registry.binding_for_mac(mac, credential=credential)
            if binding is None:
                logger.info("reset %s: already unbound", mac)
                return None
            with self._locks.hold(("patient", binding.patient_id)):
                released = self._release(mac, binding.patient_id, credential)
        return released

    def _release(self, mac: str, patient_id: str, credential: Credential | None) -> Optional[Binding]:
        released = self.registry.release(mac, credential=credential)
        if released is None:
            return None
        self._record(credential, "reset", mac, {"patientId": patient_id})
        return Binding(patient_id=patient_id)

    def delete_patient(self, patient_id: str, credential: Credential | None = None) -> Patient:
        patient_id = str(patient_id)
        with self._transition("delete_patient", patient_id):
            while True:
                seen = self.registry.get_binding(patient_id, credential=credential)
                keys = [("mac", seen.mac_address)] if seen.is_bound else []
                keys.append(("patient", patient_id))
                with self._locks.hold(*keys):
                    current = self.registry.get_binding(patient_id, credential=credential)
                    if current.mac_address != seen.mac_address:
                        # binding changed between lookup and locking
                        continue
                    if current.is_bound:
                        self._release(current.mac_address, patient_id, credential)
                    patient = self.registry.remove_patient(patient_id, credential=credential)
                    self._record(
                        credential,
                        "delete_patient",
                        patient_id,
                        {"releasedMacAddress": current.mac_address},
                    )
                    return patient
