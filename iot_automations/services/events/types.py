from dataclasses import dataclass

from iot_automations.schemas.automation import ActionExecutionResult, Automation, AutomationLog


@dataclass(frozen=True)
class ExecutionOutcome:
    """One automation run triggered by an event."""

    automation: Automation
    action_results: list[ActionExecutionResult]
    # None when the run could not be recorded
    log: AutomationLog | None
