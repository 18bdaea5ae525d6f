"""Event handlers module.

Provides handlers for processing events:
- AutomationHandler: matches workspace automations and runs their actions
"""

from iot_automations.services.events.handlers.automation import AutomationHandler

__all__ = ["AutomationHandler"]
