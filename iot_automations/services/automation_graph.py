"""Feedback-loop advisor for a workspace's automation set.

Single-hop and syntactic: an automation whose ``update_device`` action targets
a device watched by another automation's ``device_data`` trigger is reported.
Field values are not simulated, an automation is never reported against
itself and longer cycles (A -> B -> C -> A) are not followed. Warnings are
advisory; nothing is blocked because of them.
"""

from collections import defaultdict
from collections.abc import Iterable

from iot_automations.schemas.automation import Automation, DeviceDataTrigger, UpdateDeviceAction


def validate_automation_graph(automations: Iterable[Automation]) -> list[str]:
    automations = list(automations)
    watchers: dict[str, list[Automation]] = defaultdict(list)
    for automation in automations:
        trigger = automation.trigger_config
        if isinstance(trigger, DeviceDataTrigger):
            watchers[trigger.device_id].append(automation)

    warnings: list[str] = []
    for automation in automations:
        for action in automation.actions:
            if not isinstance(action, UpdateDeviceAction):
                continue
            for watcher in watchers.get(action.target_device_id, []):
                if watcher.automation_id == automation.automation_id:
                    continue
                warnings.append(
                    f"Potential loop: automation {automation.automation_id} updates device "
                    f"{action.target_device_id}, which is watched by automation {watcher.automation_id}"
                )
    return warnings
