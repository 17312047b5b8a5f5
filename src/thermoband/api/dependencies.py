from fastapi import Request

from ..config import ThermobandConfig
from ..errors import NotFoundError
from ..registry.device_registry import DeviceRegistry
from ..registry.lifecycle import DeviceLifecycleManager
from ..registry.models import Patient
from ..security.credentials import Credential
from ..telemetry.samples import SampleLog


def get_config(request: Request) -> ThermobandConfig:
    return request.app.state.config


def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.registry


def get_lifecycle(request: Request) -> DeviceLifecycleManager:
    return request.app.state.lifecycle


def get_sample_log(request: Request) -> SampleLog:
    return request.app.state.sample_log


def owned_patient(registry: DeviceRegistry, patient_id: str, credential: Credential) -> Patient:
    """Look up a patient visible to the caller's account.

    Same rule as ``visible_patients``: a caller with a subject sees only the
    patients it owns. Anything else is reported as missing rather than
    forbidden so ids do not leak.
    """
    patient = registry.get_patient(patient_id)
    if patient is None:
        raise NotFoundError(f"Unknown patient {patient_id}", patientId=patient_id)
    if credential.subject is not None and patient.owner_id != credential.subject:
        raise NotFoundError(f"Unknown patient {patient_id}", patientId=patient_id)
    return patient


def visible_patients(registry: DeviceRegistry, credential: Credential) -> list[Patient]:
    return registry.list_patients(owner_id=credential.subject)
