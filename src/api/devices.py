"""Device management API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_client_ip, get_current_principal, get_device_registry
from src.schemas.auth import MessageResponse
from src.schemas.device import DeviceResponse, DeviceSettingsUpdate
from src.services.auth_gate import Principal
from src.services.devices import DeviceRegistry
from src.services.realtime import SessionDirectory, get_session_directory

router = APIRouter(prefix="/api/v1/devices", tags=["devices"])


def _to_response(device, principal: Principal) -> DeviceResponse:
    response = DeviceResponse.model_validate(device)
    response.is_current = device.id == principal.device_id
    return response


@router.get("", response_model=list[DeviceResponse])
async def list_devices(
    principal: Annotated[Principal, Depends(get_current_principal)],
    registry: Annotated[DeviceRegistry, Depends(get_device_registry)],
):
    """List the user's devices, most recently active first."""
    return [_to_response(d, principal) for d in registry.list_user_devices(principal.user_id)]


@router.put("/{device_id}/settings", response_model=DeviceResponse)
async def update_device_settings(
    device_id: str,
    changes: DeviceSettingsUpdate,
    principal: Annotated[Principal, Depends(get_current_principal)],
    registry: Annotated[DeviceRegistry, Depends(get_device_registry)],
):
    device = registry.update_settings(
        principal.user_id, device_id, changes.model_dump(exclude_unset=True)
    )
    return _to_response(device, principal)


@router.delete("/{device_id}", response_model=MessageResponse)
async def remove_device(
    device_id: str,
    request: Request,
    principal: Annotated[Principal, Depends(get_current_principal)],
    registry: Annotated[DeviceRegistry, Depends(get_device_registry)],
    directory: Annotated[SessionDirectory, Depends(get_session_directory)],
):
    """Remove a device. It loses sync access immediately."""
    registry.remove_device(
        principal.user_id,
        device_id,
        removed_by_id=principal.device_id,
        ip_address=get_client_ip(request),
    )
    await directory.disconnect_device(device_id, reason="Device removed")
    return MessageResponse(message="Device removed successfully")
