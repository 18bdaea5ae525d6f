"""Action pipeline executor for automations.

Runs an automation's actions in order. Each action is wrapped in try/except
for partial failure semantics: a failing action produces a failure result and
the remaining actions still run.
"""

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import httpx

from iot_automations.config import settings
from iot_automations.schemas.automation import (
    ActionConfig,
    ActionExecutionResult,
    ActionStatus,
    DelayAction,
    LogAction,
    SendEmailAction,
    SendWebhookAction,
    UpdateDeviceAction,
)
from iot_automations.services.automation_observability import AUTOMATION_ACTIONS
from iot_automations.services.device_dispatch import DeviceDispatcher
from iot_automations.services.email import RenderedEmail, SmtpEmailClient
from iot_automations.services.entity_store import EntityStore
from iot_automations.services.workspaces import get_workspace_name

logger = logging.getLogger(__name__)


class ActionError(ValueError):
    """Raised by an action handler to report a failed side effect."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class EmailClient(Protocol):
    def render(self, subject: str, body: str, context: dict[str, Any]) -> RenderedEmail: ...

    def send(self, to_email: str, subject: str, body_html: str, body_text: str) -> tuple[bool, str | None]: ...


class CommandDispatcher(Protocol):
    def send_command(self, workspace_id: str, device_id: str, command: dict[str, Any]) -> None: ...


def _action_delay_seconds(action: ActionConfig) -> float:
    """Scheduling delay applied before the action runs."""
    if isinstance(action, DelayAction):
        return 0.0
    delay_ms = getattr(action, "delay_ms", None)
    if not delay_ms:
        return 0.0
    return delay_ms / 1000


def _email_context(workspace_id: str, workspace_name: str, context: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {"workspace_id": workspace_id, "workspace_name": workspace_name}
    fields = context.get("fields")
    if isinstance(fields, Mapping):
        values.update({str(key): value for key, value in fields.items()})
    values.update({str(key): value for key, value in context.items() if key != "fields"})
    return values


class ActionExecutor:
    def __init__(
        self,
        store: EntityStore,
        email_client: EmailClient | None = None,
        dispatcher: CommandDispatcher | None = None,
        *,
        http_timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.email_client = email_client or SmtpEmailClient()
        self.dispatcher = dispatcher or DeviceDispatcher()
        self.http_timeout = http_timeout if http_timeout is not None else settings.automation_http_timeout_seconds
        self.sleep = sleep

    def execute(
        self,
        workspace_id: str,
        actions: list[ActionConfig],
        context: dict[str, Any],
    ) -> list[ActionExecutionResult]:
        """Execute ``actions`` in order and return one result per action."""
        workspace_name = self._workspace_name(workspace_id)
        results: list[ActionExecutionResult] = []

        for index, action in enumerate(actions):
            delay = _action_delay_seconds(action)
            if delay > 0:
                self.sleep(delay)

            started = time.monotonic()
            try:
                self._dispatch_action(workspace_id, workspace_name, action, context)
                status = ActionStatus.success
                error = None
            except Exception as exc:
                logger.exception("Automation action %s (#%d) failed: %s", action.type, index, exc)
                status = ActionStatus.failure
                error = str(exc) or exc.__class__.__name__

            duration_ms = int((time.monotonic() - started) * 1000)
            AUTOMATION_ACTIONS.labels(action_type=action.type, status=status.value).inc()
            results.append(
                ActionExecutionResult(
                    action_index=index,
                    action_type=action.type,
                    status=status,
                    error=error,
                    duration_ms=duration_ms,
                )
            )

        return results

    def _workspace_name(self, workspace_id: str) -> str:
        try:
            return get_workspace_name(self.store, workspace_id)
        except Exception:
            logger.warning("Could not resolve name of workspace %s", workspace_id, exc_info=True)
            return workspace_id

    def _dispatch_action(
        self,
        workspace_id: str,
        workspace_name: str,
        action: ActionConfig,
        context: dict[str, Any],
    ) -> None:
        """Route to the appropriate action handler."""
        if isinstance(action, LogAction):
            self._execute_log(workspace_id, action, context)
        elif isinstance(action, SendWebhookAction):
            self._execute_send_webhook(action, context)
        elif isinstance(action, UpdateDeviceAction):
            self._execute_update_device(workspace_id, action, context)
        elif isinstance(action, SendEmailAction):
            self._execute_send_email(workspace_id, workspace_name, action, context)
        elif isinstance(action, DelayAction):
            self._execute_delay(action)
        else:
            raise ActionError(f"Unknown action type: {getattr(action, 'type', action)!r}")

    def _execute_log(self, workspace_id: str, action: LogAction, context: dict[str, Any]) -> None:
        logger.info("Automation log [%s]: %s context=%s", workspace_id, action.message, context)

    def _execute_send_webhook(self, action: SendWebhookAction, context: dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json", **action.headers}
        body = None
        if action.method != "GET":
            body = {**(action.body_template or {}), "context": context}

        try:
            with httpx.Client(timeout=self.http_timeout) as client:
                response = client.request(action.method, action.url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise ActionError(f"Webhook {action.method} {action.url} failed: {exc}") from exc

        if not response.is_success:
            raise ActionError(f"Webhook {action.method} {action.url} returned HTTP {response.status_code}")

    def _execute_update_device(self, workspace_id: str, action: UpdateDeviceAction, context: dict[str, Any]) -> None:
        command = {
            "type": "set_field",
            "field": action.field,
            "value": action.value,
            "context": context,
        }
        self.dispatcher.send_command(workspace_id, action.target_device_id, command)

    def _execute_send_email(
        self,
        workspace_id: str,
        workspace_name: str,
        action: SendEmailAction,
        context: dict[str, Any],
    ) -> None:
        rendered = self.email_client.render(
            action.subject,
            action.body,
            _email_context(workspace_id, workspace_name, context),
        )
        ok, error = self.email_client.send(action.to, rendered.subject, rendered.html, rendered.text)
        if not ok:
            raise ActionError(error or f"Email to {action.to} was not sent")

    def _execute_delay(self, action: DelayAction) -> None:
        if action.delay_seconds > 0:
            self.sleep(action.delay_seconds)
