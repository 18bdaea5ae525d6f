"""Dependency injection container.

Route handlers get their services through ``iot_automations.api.deps``, which
reads them from this container. Tests swap a provider with ``override``:

    with container.event_queue.override(FakeQueue()):
        response = client.post("/automations/workspaces/ws-1/events/device-data", ...)
"""

from __future__ import annotations

from dependency_injector import containers, providers  # type: ignore[import-not-found]


def _get_automation_rules_service():
    from iot_automations.services.automation_rules import automation_rules_service
    return automation_rules_service


def _get_event_queue():
    from iot_automations.services.event_queue import event_queue
    return event_queue


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Services are provided as singletons since they're stateless managers
    automation_rules_service = providers.Singleton(_get_automation_rules_service)
    event_queue = providers.Singleton(_get_event_queue)


# Global container instance
container = Container()


def get_container() -> Container:
    """Get the global container instance."""
    return container
