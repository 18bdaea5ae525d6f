from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ListResponse(BaseModel, Generic[T]):
    items: list[T]
    count: int
    limit: int | None = None


def list_response(items: list, limit: int | None = None) -> dict:
    return {"items": items, "count": len(items), "limit": limit}


class EventAccepted(BaseModel):
    accepted: bool = True
    task_id: str | None = None


class GraphWarnings(BaseModel):
    warnings: list[str]


class NextScheduleFire(BaseModel):
    next_fire_at: str | None = None
