from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AutomationStatus(enum.Enum):
    active = "active"
    paused = "paused"
    disabled = "disabled"


class TriggerType(enum.Enum):
    device_data = "device_data"
    device_status = "device_status"
    schedule = "schedule"


class LogicOperator(enum.Enum):
    and_ = "AND"
    or_ = "OR"


class DeviceConnectivity(enum.Enum):
    online = "online"
    offline = "offline"


class ActionStatus(enum.Enum):
    success = "success"
    failure = "failure"


class AutomationLogStatus(enum.Enum):
    success = "success"
    partial_failure = "partial_failure"
    failure = "failure"


CONDITION_OPERATORS = frozenset(
    {
        "equals",
        "not_equals",
        "greater_than",
        "less_than",
        "greater_than_or_equal",
        "less_than_or_equal",
        "contains",
        "not_contains",
    }
)


class Condition(BaseModel):
    field: str = Field(min_length=1)
    # Kept as a plain string: stored rules with an operator this version does
    # not know about must evaluate to False instead of failing to load.
    operator: str = Field(min_length=1)
    value: Any = None


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class DeviceDataTrigger(BaseModel):
    type: Literal["device_data"] = "device_data"
    device_id: str = Field(min_length=1)
    logic: LogicOperator = LogicOperator.and_
    conditions: list[Condition] = Field(default_factory=list)


class DeviceStatusTrigger(BaseModel):
    type: Literal["device_status"] = "device_status"
    device_id: str = Field(min_length=1)
    status: DeviceConnectivity


class ScheduleTrigger(BaseModel):
    type: Literal["schedule"] = "schedule"
    cron: str = Field(min_length=1)
    timezone: str | None = None


TriggerConfig = Annotated[
    DeviceDataTrigger | DeviceStatusTrigger | ScheduleTrigger,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class LogAction(BaseModel):
    type: Literal["log"] = "log"
    message: str = ""
    delay_ms: int | None = Field(default=None, ge=0)


class SendWebhookAction(BaseModel):
    type: Literal["send_webhook"] = "send_webhook"
    url: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body_template: dict[str, Any] | None = None
    delay_ms: int | None = Field(default=None, ge=0)


class UpdateDeviceAction(BaseModel):
    type: Literal["update_device"] = "update_device"
    target_device_id: str = Field(min_length=1)
    field: str = Field(min_length=1)
    value: Any = None
    delay_ms: int | None = Field(default=None, ge=0)


class SendEmailAction(BaseModel):
    type: Literal["send_email"] = "send_email"
    to: str = Field(min_length=1)
    subject: str = ""
    body: str = ""
    delay_ms: int | None = Field(default=None, ge=0)


class DelayAction(BaseModel):
    type: Literal["delay"] = "delay"
    delay_seconds: float = Field(default=0, ge=0)


ActionConfig = Annotated[
    LogAction | SendWebhookAction | UpdateDeviceAction | SendEmailAction | DelayAction,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------


class ConditionGroup(BaseModel):
    device_id: str = Field(min_length=1)
    logic: LogicOperator = LogicOperator.and_
    conditions: list[Condition] = Field(default_factory=list)


class AutomationBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    status: AutomationStatus = AutomationStatus.active
    trigger_type: TriggerType
    trigger_config: TriggerConfig
    condition_groups: list[ConditionGroup] = Field(default_factory=list)
    condition_logic: LogicOperator = LogicOperator.and_
    actions: list[ActionConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_trigger_pairing(self) -> AutomationBase:
        if self.trigger_config.type != self.trigger_type.value:
            raise ValueError(
                f"trigger_config.type '{self.trigger_config.type}' does not match "
                f"trigger_type '{self.trigger_type.value}'"
            )
        return self


def _is_loadable_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
        return True
    except Exception:
        return False


def _check_schedule_timezone(trigger_config: TriggerConfig | None) -> None:
    if not isinstance(trigger_config, ScheduleTrigger):
        return
    name = (trigger_config.timezone or "").strip()
    if name and not _is_loadable_timezone(name):
        raise ValueError(f"Unknown timezone '{name}'")


class AutomationCreate(AutomationBase):
    @model_validator(mode="after")
    def validate_schedule_timezone(self) -> AutomationCreate:
        _check_schedule_timezone(self.trigger_config)
        return self


class AutomationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    status: AutomationStatus | None = None
    trigger_type: TriggerType | None = None
    trigger_config: TriggerConfig | None = None
    condition_groups: list[ConditionGroup] | None = None
    condition_logic: LogicOperator | None = None
    actions: list[ActionConfig] | None = None

    @model_validator(mode="after")
    def validate_schedule_timezone(self) -> AutomationUpdate:
        _check_schedule_timezone(self.trigger_config)
        return self


class Automation(AutomationBase):
    model_config = ConfigDict(from_attributes=True)

    automation_id: str
    workspace_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------


class ActionExecutionResult(BaseModel):
    action_index: int
    action_type: str
    status: ActionStatus
    error: str | None = None
    duration_ms: int = 0


class AutomationLog(BaseModel):
    log_id: str
    workspace_id: str
    automation_id: str
    automation_name: str
    trigger_type: TriggerType
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    conditions_matched: bool = True
    status: AutomationLogStatus
    action_results: list[ActionExecutionResult] = Field(default_factory=list)
    total_duration_ms: int = 0
    created_at: datetime
    expires_at: datetime | None = None


class AutomationLogIndex(BaseModel):
    log_id: str
    workspace_id: str
    automation_id: str
    automation_name: str = ""
    trigger_type: TriggerType
    status: AutomationLogStatus
    total_duration_ms: int = 0
    created_at: datetime


class AutomationStats(BaseModel):
    workspace_id: str
    automation_id: str
    total_executions: int = 0
    success_count: int = 0
    failure_count: int = 0
    partial_failure_count: int = 0
    last_execution_at: datetime | None = None
    last_execution_status: AutomationLogStatus | None = None
    total_duration_ms: int = 0


class AutomationStatsRead(AutomationStats):
    average_duration_ms: int = 0


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------


class DeviceDataEventIn(BaseModel):
    device_id: str = Field(min_length=1)
    fields: dict[str, Any] = Field(default_factory=dict)


class DeviceStatusEventIn(BaseModel):
    device_id: str = Field(min_length=1)
    status: DeviceConnectivity


class ScheduleTickEventIn(BaseModel):
    now: datetime | None = None
