# smart_irrigation_controller/server/api/routes.py

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from smart_irrigation_controller.controller.controller_service import ControllerService
from smart_irrigation_controller.controller.core.enums import RelayCommand
from smart_irrigation_controller.controller.core.event_log import RECENT_EVENTS_LIMIT
from smart_irrigation_controller.controller.core.status_models import Decision
from smart_irrigation_controller.server.schemas.irrigation import (
    DebugStateResponse,
    DecisionResponse,
    DeviceStateRequest,
    DeviceStateResponse,
    DevicesResponse,
    ForceActionRequest,
    ForceStateRequest,
    ManualLockRequest,
    ThresholdResponse,
)


router = APIRouter()


def _service(request: Request) -> ControllerService:
    return request.app.state.service


def _decision_response(device_id: str, decision: Decision) -> DecisionResponse:
    return DecisionResponse(
        device_id=device_id,
        action=decision.action.value,
        reason=decision.reason.value,
        actuated=decision.actuated,
        extra=decision.event.extra,
    )


# ============================================================================================================
# api endpoints
# ============================================================================================================

@router.get("/ping")
def ping() -> dict:
    """Health check endpoint."""
    return {"message": "pong"}


@router.get(
    "/irrigation/threshold",
    summary="Compute the current ON/OFF soil moisture band",
    response_model=ThresholdResponse,
)
def threshold(
    request: Request,
    device_id: Optional[str] = Query(None, alias="deviceId"),
    crop: Optional[str] = Query(None),
    lat: Optional[float] = Query(None),
    lon: Optional[float] = Query(None),
):
    result = _service(request).controller.query_threshold(device_id=device_id, crop=crop, lat=lat, lon=lon)
    return ThresholdResponse(**result.to_dict())


@router.post(
    "/irrigation/debug/state",
    summary="Read device state and its most recent events",
    response_model=DebugStateResponse,
)
def debug_state(req: DeviceStateRequest, request: Request):
    service = _service(request)
    state = service.state_manager.get(req.device_id)
    try:
        events = service.event_log.recent(req.device_id, RECENT_EVENTS_LIMIT)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to read irrigation events: {str(e)}")
    return DebugStateResponse(
        device_id=req.device_id,
        state=DeviceStateResponse(**state.to_dict()) if state is not None else None,
        events=events,
    )


@router.post(
    "/irrigation/debug/force-state",
    summary="Overwrite relay state and interlock timestamps without actuating",
    response_model=DeviceStateResponse,
)
def force_state(req: ForceStateRequest, request: Request):
    state = _service(request).state_manager.force_state(
        req.device_id,
        relay_state=req.relay_state,
        last_on_ts=req.last_on_ts,
        last_off_ts=req.last_off_ts,
    )
    return DeviceStateResponse(**state.to_dict())


@router.post(
    "/irrigation/force",
    summary="Operator force ON/OFF, bypassing interlocks",
    response_model=DecisionResponse,
)
def force_action(req: ForceActionRequest, request: Request):
    decision = _service(request).controller.force_action(req.device_id, RelayCommand(req.action.value))
    if not decision.actuated:
        raise HTTPException(
            status_code=502,
            detail=f"Relay command {req.action.value} could not be delivered to device {req.device_id}",
        )
    return _decision_response(req.device_id, decision)


@router.post(
    "/irrigation/manual-lock",
    summary="Enable or disable the manual lock for a device",
    response_model=DeviceStateResponse,
)
def manual_lock(req: ManualLockRequest, request: Request):
    state = _service(request).state_manager.set_manual_lock(req.device_id, req.locked)
    return DeviceStateResponse(**state.to_dict())


@router.get(
    "/irrigation/devices",
    summary="List the state of every known device",
    response_model=DevicesResponse,
)
def devices(request: Request):
    states = _service(request).state_manager.all_states()
    return DevicesResponse(devices=[DeviceStateResponse(**s.to_dict()) for s in states])
