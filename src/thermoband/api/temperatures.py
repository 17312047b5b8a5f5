from __future__ import annotations

from typing import List
import time

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..errors import NotFoundError
from ..registry.device_registry import DeviceRegistry
from ..security.credentials import Credential
from ..telemetry.aggregation import latest_per_patient, samples_for_patient, window_filter
from ..telemetry.samples import SampleLog, TemperatureSample, parse_timestamp
from ..telemetry.triage import classify, filter_by_range, resolve_range
from ..utils.auth import require_credential
from .dependencies import get_registry, get_sample_log, owned_patient, visible_patients


router = APIRouter(tags=["temperatures"])


class SampleIngest(BaseModel):
    patientId: str
    timestamp: float | str
    temperatureC: float = Field(allow_inf_nan=False)


@router.post("/temperatures")
def ingest_temperatures(
    samples: List[SampleIngest],
    _: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    sample_log: SampleLog = Depends(get_sample_log),
):
    """Append readings; the whole batch is rejected if any patient is unknown."""
    to_store: List[TemperatureSample] = []
    for s in samples:
        if registry.get_patient(s.patientId) is None:
            raise NotFoundError(f"Unknown patient {s.patientId}", patientId=s.patientId)
        to_store.append(
            TemperatureSample(
                patient_id=s.patientId,
                timestamp=parse_timestamp(s.timestamp),
                temperature_c=s.temperatureC,
            )
        )
    return {"accepted": sample_log.append(to_store)}


@router.get("/temperatures")
def list_temperatures(
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    sample_log: SampleLog = Depends(get_sample_log),
):
    visible = {p.patient_id for p in visible_patients(registry, credential)}
    return [s.to_dict() for s in sample_log.snapshot() if s.patient_id in visible]


@router.get("/temperatures/{patient_id}")
def patient_temperatures(
    patient_id: str,
    window: int | None = None,
    now: float | None = None,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    sample_log: SampleLog = Depends(get_sample_log),
):
    patient = owned_patient(registry, patient_id, credential)
    samples = samples_for_patient(sample_log.snapshot(), patient.patient_id)
    if window is not None:
        samples = window_filter(samples, time.time() if now is None else now, window)
    return [s.to_dict() for s in samples]


@router.get("/dashboard")
def dashboard(
    filter: str = "all",
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    sample_log: SampleLog = Depends(get_sample_log),
):
    """Latest reading per patient plus the roster subset in the chosen band."""
    band = resolve_range(filter)
    roster = visible_patients(registry, credential)
    visible = {p.patient_id for p in roster}
    latest = latest_per_patient(s for s in sample_log.snapshot() if s.patient_id in visible)

    patients = []
    for p in filter_by_range(roster, latest, band):
        entry = p.to_dict()
        sample = latest.get(p.patient_id)
        entry["latest"] = sample.to_dict() if sample is not None else None
        entry["band"] = classify(sample.temperature_c) if sample is not None else None
        patients.append(entry)

    return {
        "filter": band.name if band is not None else "all",
        "latest": {pid: s.to_dict() for pid, s in latest.items()},
        "patients": patients,
    }
