from iot_automations.tasks.automations import (
    dispatch_schedule_ticks,
    process_device_data_event,
    process_device_status_event,
    purge_expired_entities,
    run_schedule_tick,
)

__all__ = [
    "dispatch_schedule_ticks",
    "process_device_data_event",
    "process_device_status_event",
    "purge_expired_entities",
    "run_schedule_tick",
]
