from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from ..registry.device_registry import DeviceRegistry
from ..registry.lifecycle import DeviceLifecycleManager
from ..security.credentials import Credential
from ..utils.auth import require_credential
from .dependencies import get_lifecycle, get_registry, owned_patient


router = APIRouter(prefix="/devices", tags=["devices"])


class DeviceCreate(BaseModel):
    macAddress: str
    label: str | None = None


class DeviceResponse(BaseModel):
    macAddress: str
    label: str | None = None


class IntervalUpdate(BaseModel):
    sampleIntervalSeconds: int


def _check_holder(registry: DeviceRegistry, mac: str, credential: Credential) -> None:
    binding = registry.binding_for_mac(mac, credential=credential)
    if binding is not None:
        owned_patient(registry, binding.patient_id, credential)


@router.get("/unassigned", response_model=List[DeviceResponse])
def list_unassigned(
    _: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Devices currently free to be assigned to a patient."""
    return [d.to_dict() for d in registry.list_unassigned_devices()]


@router.post("", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
def provision_device(
    payload: DeviceCreate,
    _: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
):
    return registry.add_device(payload.macAddress, label=payload.label).to_dict()


@router.post("/{mac_address}/interval")
def set_interval(
    mac_address: str,
    payload: IntervalUpdate,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    lifecycle: DeviceLifecycleManager = Depends(get_lifecycle),
):
    _check_holder(registry, mac_address, credential)
    binding = lifecycle.set_interval(mac_address, payload.sampleIntervalSeconds, credential=credential)
    return binding.to_dict()


@router.post("/{mac_address}/reset")
def reset_device(
    mac_address: str,
    credential: Credential = Depends(require_credential),
    registry: DeviceRegistry = Depends(get_registry),
    lifecycle: DeviceLifecycleManager = Depends(get_lifecycle),
):
    _check_holder(registry, mac_address, credential)
    released = lifecycle.reset(mac_address, credential=credential)
    return {
        "macAddress": registry.get_device(mac_address).mac_address,
        "released": released is not None,
        "binding": released.to_dict() if released is not None else None,
    }
