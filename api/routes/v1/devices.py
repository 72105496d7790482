"""
api/routes/v1/devices.py -- Trusted-device listing and removal.

Routes:
  GET    /api/v1/auth/devices                   -- caller's trusted devices
  GET    /api/v1/auth/trusted-devices/{user_id} -- a user's devices (self or admin)
  DELETE /api/v1/auth/devices                   -- remove one device, or all with remove_all=true

IDOR guard: removal targets the caller unless user_id is given, and only an
admin may name another user. A device id alone is never enough to delete
someone else's device.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import DeviceRemoveRequest, DeviceRemoveResponse, TrustedDeviceResponse
from auth.dependencies import get_current_user
from auth.devices import DeviceTrustStore
from auth.models import User
from core.errors import NotFoundError, ValidationError

router = APIRouter()


def _target_user(current_user: User, user_id: str | None) -> str:
    target = user_id or current_user.id
    if target != current_user.id and current_user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You may only manage your own devices."},
        )
    return target


@router.get("/auth/devices", response_model=list[TrustedDeviceResponse])
def list_my_devices(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> list[TrustedDeviceResponse]:
    devices: DeviceTrustStore = request.app.state.devices
    return [TrustedDeviceResponse.from_device(d) for d in devices.list(current_user.id)]


@router.get("/auth/trusted-devices/{user_id}", response_model=list[TrustedDeviceResponse])
def list_user_devices(
    request: Request,
    user_id: str,
    current_user: User = Depends(get_current_user),
) -> list[TrustedDeviceResponse]:
    target = _target_user(current_user, user_id)
    devices: DeviceTrustStore = request.app.state.devices
    return [TrustedDeviceResponse.from_device(d) for d in devices.list(target)]


@router.delete("/auth/devices", response_model=DeviceRemoveResponse)
def remove_devices(
    request: Request,
    body: DeviceRemoveRequest,
    current_user: User = Depends(get_current_user),
) -> DeviceRemoveResponse:
    target = _target_user(current_user, body.user_id)
    devices: DeviceTrustStore = request.app.state.devices

    if body.remove_all:
        removed = devices.remove_all(target)
    elif body.device_id:
        if not devices.remove(target, body.device_id):
            raise NotFoundError(f"device {body.device_id[:15]} not found for {target}", "Device not found.")
        removed = 1
    else:
        raise ValidationError("device removal without device_id or remove_all", "Provide device_id or remove_all.")

    request.app.state.audit.record(
        target,
        "device_removed",
        {"removed": removed, "device_id": body.device_id, "actor_id": current_user.id},
        ip_address=request.client.host if request.client else "",
    )
    return DeviceRemoveResponse(removed=removed)
