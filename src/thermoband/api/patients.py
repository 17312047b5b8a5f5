from __future__ import annotations

from typing import List
import time

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..config import ThermobandConfig
from ..registry.device_registry import DeviceRegistry
from ..registry.lifecycle import DeviceLifecycleManager
from ..security.credentials import Credential
from ..telemetry.aggregation import chart_series, samples_for_patient, temperature_summary, window_filter
from ..telemetry.samples import SampleLog
from ..utils.auth import require_credential
from .dependencies import get_config, get_lifecycle, get_registry, get_sample_log, owned_patient, visible_patients


router = APIRouter(tags=["patients"])


class PatientCreate(BaseModel):
    name: str
    age: int = Field(ge=0)


class PatientResponse(BaseModel):
    patientId: str
    name: str
    age: int
    ownerId: str | None = None


class AssignDevice(BaseModel):
    patientId: str
    macAddress: str


class BindingResponse(BaseModel):
    patientId: str
    macAddress: str | None = None
    sampleIntervalSeconds: int | None = None
    state: str


@router.get("/patients", response_model=List[PatientResponse])
def list_patients(
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Roster of the caller's hospital account."""
    return [p.to_dict() for p in visible_patients(registry, credential)]


@router.post("/patients/add", status_code=status.HTTP_201_CREATED)
def add_patient(
    payload: PatientCreate,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
):
    patient = registry.create_patient(payload.name, payload.age, owner_id=credential.subject)
    return {"patient": patient.to_dict()}


@router.get("/patients/{patient_id}")
def patient_details(
    patient_id: str,
    now: float | None = None,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    lifecycle: DeviceLifecycleManager = Depends(get_lifecycle),
    sample_log: SampleLog = Depends(get_sample_log),
    cfg: ThermobandConfig = Depends(get_config),
):
    """Patient record, current binding and the windowed temperature history."""
    patient = owned_patient(registry, patient_id, credential)
    now = time.time() if now is None else now
    history = window_filter(
        samples_for_patient(sample_log.snapshot(), patient.patient_id),
        now,
        cfg.history_window_seconds,
    )
    return {
        "patient": patient.to_dict(),
        "binding": lifecycle.state_of(patient.patient_id, credential=credential).to_dict(),
        "windowSeconds": cfg.history_window_seconds,
        "history": [s.to_dict() for s in history],
        "summary": temperature_summary(history),
        "chart": chart_series(history),
    }


@router.delete("/patients/{patient_id}")
def delete_patient(
    patient_id: str,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    lifecycle: DeviceLifecycleManager = Depends(get_lifecycle),
):
    owned_patient(registry, patient_id, credential)
    patient = lifecycle.delete_patient(patient_id, credential=credential)
    return {"patientId": patient.patient_id, "deleted": True}


@router.post("/patients/assign-device", response_model=BindingResponse)
def assign_device(
    payload: AssignDevice,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    lifecycle: DeviceLifecycleManager = Depends(get_lifecycle),
):
    owned_patient(registry, payload.patientId, credential)
    return lifecycle.assign(payload.patientId, payload.macAddress, credential=credential).to_dict()


@router.get("/devicepatient/{patient_id}", response_model=BindingResponse)
def patient_binding(
    patient_id: str,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    lifecycle: DeviceLifecycleManager = Depends(get_lifecycle),
):
    owned_patient(registry, patient_id, credential)
    return lifecycle.state_of(patient_id, credential=credential).to_dict()
