from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from iot_automations.api.deps import get_automation_rules_service, get_db, get_event_queue
from iot_automations.schemas.automation import (
    Automation,
    AutomationCreate,
    AutomationLog,
    AutomationStatsRead,
    AutomationStatus,
    AutomationUpdate,
    DeviceDataEventIn,
    DeviceStatusEventIn,
    ScheduleTickEventIn,
)
from iot_automations.schemas.common import (
    EventAccepted,
    GraphWarnings,
    ListResponse,
    NextScheduleFire,
    list_response,
)

router = APIRouter(prefix="/automations", tags=["automations"])


# ==========================================================================
# Rules
# ==========================================================================


@router.post(
    "/workspaces/{workspace_id}/automations",
    response_model=Automation,
    status_code=status.HTTP_201_CREATED,
)
def create_automation(
    workspace_id: str,
    payload: AutomationCreate,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    return service.create(db, workspace_id, payload)


@router.get("/workspaces/{workspace_id}/automations", response_model=ListResponse[Automation])
def list_automations(
    workspace_id: str,
    status: str | None = None,
    trigger_type: str | None = None,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    items = service.list(db, workspace_id, status=status, trigger_type=trigger_type)
    return list_response(items)


@router.get("/workspaces/{workspace_id}/automations/{automation_id}", response_model=Automation)
def get_automation(
    workspace_id: str,
    automation_id: str,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    return service.get(db, workspace_id, automation_id)


@router.patch("/workspaces/{workspace_id}/automations/{automation_id}", response_model=Automation)
def update_automation(
    workspace_id: str,
    automation_id: str,
    payload: AutomationUpdate,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    return service.update(db, workspace_id, automation_id, payload)


@router.post("/workspaces/{workspace_id}/automations/{automation_id}/status", response_model=Automation)
def set_automation_status(
    workspace_id: str,
    automation_id: str,
    new_status: AutomationStatus = Query(alias="status"),
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    return service.set_status(db, workspace_id, automation_id, new_status)


@router.delete(
    "/workspaces/{workspace_id}/automations/{automation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_automation(
    workspace_id: str,
    automation_id: str,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    service.delete(db, workspace_id, automation_id)


@router.get("/workspaces/{workspace_id}/graph-warnings", response_model=GraphWarnings)
def get_graph_warnings(
    workspace_id: str,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    return {"warnings": service.validate_graph(db, workspace_id)}


@router.get("/workspaces/{workspace_id}/next-schedule-fire", response_model=NextScheduleFire)
def get_next_schedule_fire(
    workspace_id: str,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    fire_at = service.next_schedule_fire(db, workspace_id)
    return {"next_fire_at": fire_at.isoformat() if fire_at else None}


# ==========================================================================
# Event ingress
# ==========================================================================


@router.post(
    "/workspaces/{workspace_id}/events/device-data",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def ingest_device_data(workspace_id: str, payload: DeviceDataEventIn, queue=Depends(get_event_queue)):
    task_id = queue.enqueue_device_data(workspace_id, payload.device_id, payload.fields)
    return {"accepted": True, "task_id": task_id}


@router.post(
    "/workspaces/{workspace_id}/events/device-status",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def ingest_device_status(workspace_id: str, payload: DeviceStatusEventIn, queue=Depends(get_event_queue)):
    task_id = queue.enqueue_device_status(workspace_id, payload.device_id, payload.status)
    return {"accepted": True, "task_id": task_id}


@router.post(
    "/workspaces/{workspace_id}/events/schedule-tick",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def ingest_schedule_tick(workspace_id: str, payload: ScheduleTickEventIn, queue=Depends(get_event_queue)):
    task_id = queue.enqueue_schedule_tick(workspace_id, payload.now)
    return {"accepted": True, "task_id": task_id}


# ==========================================================================
# History
# ==========================================================================


@router.get("/workspaces/{workspace_id}/logs", response_model=ListResponse[AutomationLog])
def list_workspace_logs(
    workspace_id: str,
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    items = service.recent_logs(db, workspace_id, status=status, limit=limit)
    return list_response(items, limit)


@router.get(
    "/workspaces/{workspace_id}/automations/{automation_id}/logs",
    response_model=ListResponse[AutomationLog],
)
def list_automation_logs(
    workspace_id: str,
    automation_id: str,
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    items = service.recent_logs(db, workspace_id, automation_id=automation_id, status=status, limit=limit)
    return list_response(items, limit)


@router.get("/workspaces/{workspace_id}/stats", response_model=ListResponse[AutomationStatsRead])
def list_workspace_stats(
    workspace_id: str,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    return list_response(service.list_stats(db, workspace_id))


@router.get(
    "/workspaces/{workspace_id}/automations/{automation_id}/stats",
    response_model=AutomationStatsRead,
)
def get_automation_stats(
    workspace_id: str,
    automation_id: str,
    db: Session = Depends(get_db),
    service=Depends(get_automation_rules_service),
):
    return service.get_stats(db, workspace_id, automation_id)
