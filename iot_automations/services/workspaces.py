"""Workspace lookups needed by the automation engine: display name and plan."""

import logging
from dataclasses import dataclass

from iot_automations.services.entity_store import Entity, EntityStore, EntityTypes, Keys

logger = logging.getLogger(__name__)

DEFAULT_PLAN = "starter"


@dataclass(frozen=True)
class PlanLimits:
    # None means logs never expire
    ttl_days: int | None


PLAN_LIMITS: dict[str, PlanLimits] = {
    "starter": PlanLimits(ttl_days=7),
    "professional": PlanLimits(ttl_days=90),
    "business": PlanLimits(ttl_days=365),
    "enterprise": PlanLimits(ttl_days=None),
}


def get_plan_limits(plan: str | None) -> PlanLimits:
    return PLAN_LIMITS.get(plan or DEFAULT_PLAN, PLAN_LIMITS[DEFAULT_PLAN])


def get_workspace_plan(store: EntityStore, workspace_id: str) -> str:
    entity = store.get(*Keys.workspace_plan(workspace_id))
    if entity is None:
        return DEFAULT_PLAN
    plan = entity.data.get("plan")
    if plan not in PLAN_LIMITS:
        return DEFAULT_PLAN
    return plan


def set_workspace_plan(store: EntityStore, workspace_id: str, plan: str) -> None:
    if plan not in PLAN_LIMITS:
        raise ValueError(f"Unknown plan '{plan}'. Allowed: {sorted(PLAN_LIMITS)}")
    pk, sk = Keys.workspace_plan(workspace_id)
    store.put(Entity(pk=pk, sk=sk, entity_type=EntityTypes.WORKSPACE_PLAN, data={"plan": plan}))


def get_workspace_name(store: EntityStore, workspace_id: str) -> str:
    """Display name of a workspace, or the bare id when it has none."""
    entity = store.get(*Keys.workspace(workspace_id))
    if entity is None:
        return workspace_id
    return str(entity.data.get("name") or workspace_id)


def save_workspace(store: EntityStore, workspace_id: str, name: str) -> None:
    pk, sk = Keys.workspace(workspace_id)
    data = {"workspace_id": workspace_id, "name": name}
    store.put(Entity(pk=pk, sk=sk, entity_type=EntityTypes.WORKSPACE, data=data))
