from iot_automations.models.entity import StoredEntity  # noqa: F401
