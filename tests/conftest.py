import os
from datetime import UTC, datetime

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from iot_automations.db import Base
from iot_automations.models import StoredEntity  # noqa: F401
from iot_automations.schemas.automation import Automation, AutomationStatus, TriggerType
from iot_automations.services.entity_store import Entity, EntityTypes, Keys, SqlEntityStore

load_dotenv(os.path.join(os.getcwd(), ".env"))


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db_session):
    return SqlEntityStore(db_session)


@pytest.fixture()
def workspace_id():
    return "ws-1"


def make_automation(
    automation_id: str = "auto-1",
    *,
    workspace_id: str = "ws-1",
    trigger: dict | None = None,
    actions: list[dict] | None = None,
    status: AutomationStatus = AutomationStatus.active,
    condition_groups: list[dict] | None = None,
    condition_logic: str = "AND",
    name: str | None = None,
) -> Automation:
    trigger = trigger or {"type": "device_data", "device_id": "dev-1", "conditions": []}
    return Automation.model_validate(
        {
            "automation_id": automation_id,
            "workspace_id": workspace_id,
            "name": name or f"Automation {automation_id}",
            "status": status.value,
            "trigger_type": TriggerType(trigger["type"]).value,
            "trigger_config": trigger,
            "condition_groups": condition_groups or [],
            "condition_logic": condition_logic,
            "actions": actions or [],
            "created_at": datetime(2026, 1, 1, tzinfo=UTC),
            "updated_at": datetime(2026, 1, 1, tzinfo=UTC),
        }
    )


def save_automation(store: SqlEntityStore, automation: Automation) -> Automation:
    pk, sk = Keys.automation(automation.workspace_id, automation.automation_id)
    store.put(Entity(pk=pk, sk=sk, entity_type=EntityTypes.AUTOMATION, data=automation.model_dump(mode="json")))
    return automation


def save_device(store: SqlEntityStore, workspace_id: str, device_id: str, fields: dict) -> None:
    pk, sk = Keys.device(workspace_id, device_id)
    store.put(Entity(pk=pk, sk=sk, entity_type=EntityTypes.DEVICE, data={"last_data": fields}))


@pytest.fixture()
def automation_factory():
    return make_automation


@pytest.fixture()
def seed_automation(store):
    def _seed(*args, **kwargs) -> Automation:
        return save_automation(store, make_automation(*args, **kwargs))

    return _seed


@pytest.fixture()
def seed_device(store):
    def _seed(workspace_id: str, device_id: str, fields: dict) -> None:
        save_device(store, workspace_id, device_id, fields)

    return _seed
