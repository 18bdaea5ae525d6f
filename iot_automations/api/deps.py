from iot_automations.db import get_db

__all__ = ["get_automation_rules_service", "get_db", "get_event_queue"]


def get_automation_rules_service():
    """Get automation rules service from container."""
    from iot_automations.container import container
    return container.automation_rules_service()


def get_event_queue():
    """Get the event queue from container."""
    from iot_automations.container import container
    return container.event_queue()
