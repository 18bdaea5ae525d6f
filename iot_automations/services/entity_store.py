"""Partition/sort-key entity store.

Every durable record of the automation engine (automations, device
snapshots, execution logs, the per-automation log index and stats rows)
lives in one table addressed by ``(pk, sk)``. Range reads are always by
partition, ordered by sort key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from iot_automations.models.entity import StoredEntity

logger = logging.getLogger(__name__)


class EntityTypes:
    AUTOMATION = "AUTOMATION"
    AUTOMATION_LOG = "AUTOMATION_LOG"
    AUTOMATION_LOG_INDEX = "AUTOMATION_LOG_INDEX"
    AUTOMATION_STATS = "AUTOMATION_STATS"
    SCHEDULE_CLAIM = "SCHEDULE_CLAIM"
    DEVICE = "DEVICE"
    WORKSPACE = "WORKSPACE"
    WORKSPACE_PLAN = "WORKSPACE_PLAN"


class Keys:
    @staticmethod
    def workspace_partition(workspace_id: str) -> str:
        return f"WS#{workspace_id}"

    @staticmethod
    def workspace(workspace_id: str) -> tuple[str, str]:
        return f"WS#{workspace_id}", "META"

    @staticmethod
    def workspace_plan(workspace_id: str) -> tuple[str, str]:
        return f"WS#{workspace_id}", "PLAN#current"

    @staticmethod
    def automation(workspace_id: str, automation_id: str) -> tuple[str, str]:
        return f"WS#{workspace_id}", f"AUTO#{automation_id}"

    @staticmethod
    def device(workspace_id: str, device_id: str) -> tuple[str, str]:
        return f"WS#{workspace_id}", f"DEVICE#{device_id}"

    @staticmethod
    def automation_log_partition(workspace_id: str) -> str:
        return f"AUTO_LOG#{workspace_id}"

    @staticmethod
    def automation_log(workspace_id: str, timestamp: str, log_id: str) -> tuple[str, str]:
        return f"AUTO_LOG#{workspace_id}", f"{timestamp}#{log_id}"

    @staticmethod
    def automation_log_index_partition(automation_id: str) -> str:
        return f"AUTO_LOG_IDX#{automation_id}"

    @staticmethod
    def automation_log_index(automation_id: str, timestamp: str, log_id: str) -> tuple[str, str]:
        return f"AUTO_LOG_IDX#{automation_id}", f"{timestamp}#{log_id}"

    @staticmethod
    def automation_stats(workspace_id: str, automation_id: str) -> tuple[str, str]:
        return f"WS#{workspace_id}", f"AUTO_STATS#{automation_id}"

    @staticmethod
    def schedule_claim(workspace_id: str, automation_id: str) -> tuple[str, str]:
        return f"WS#{workspace_id}", f"AUTO_FIRE#{automation_id}"


class ConcurrentUpdateError(Exception):
    """Raised when a versioned write loses to a concurrent writer."""

    def __init__(self, pk: str, sk: str, expected_version: int) -> None:
        self.pk = pk
        self.sk = sk
        self.expected_version = expected_version
        super().__init__(f"Entity {pk}/{sk} changed (expected version {expected_version})")


@dataclass
class Entity:
    pk: str
    sk: str
    entity_type: str
    data: dict[str, Any] = field(default_factory=dict)
    version: int = 0
    expires_at: datetime | None = None


class EntityStore(Protocol):
    def get(self, pk: str, sk: str) -> Entity | None: ...

    def put(self, entity: Entity, expected_version: int | None = None) -> Entity: ...

    def query_by_partition(
        self,
        pk: str,
        sk_prefix: str | None = None,
        *,
        limit: int | None = None,
        descending: bool = False,
    ) -> list[Entity]: ...


def _to_entity(row: StoredEntity) -> Entity:
    return Entity(
        pk=row.pk,
        sk=row.sk,
        entity_type=row.entity_type,
        data=dict(row.data or {}),
        version=row.version,
        expires_at=row.expires_at,
    )


def _not_expired(now: datetime):
    return (StoredEntity.expires_at.is_(None)) | (StoredEntity.expires_at > now)


class SqlEntityStore:
    """EntityStore backed by the ``entities`` table.

    ``put`` without ``expected_version`` is a blind upsert. With
    ``expected_version`` it is a compare-and-swap: ``0`` means "create only",
    any other value must equal the stored version. A lost race raises
    :class:`ConcurrentUpdateError`.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, pk: str, sk: str) -> Entity | None:
        now = datetime.now(UTC)
        row = self.db.scalars(
            select(StoredEntity).where(StoredEntity.pk == pk, StoredEntity.sk == sk, _not_expired(now))
        ).first()
        if not row:
            return None
        return _to_entity(row)

    def put(self, entity: Entity, expected_version: int | None = None) -> Entity:
        if expected_version is None:
            return self._upsert(entity)
        if expected_version == 0:
            return self._insert(entity)
        return self._compare_and_swap(entity, expected_version)

    def query_by_partition(
        self,
        pk: str,
        sk_prefix: str | None = None,
        *,
        limit: int | None = None,
        descending: bool = False,
    ) -> list[Entity]:
        """Live entities of one partition in sort-key order, reversed when ``descending``."""
        now = datetime.now(UTC)
        stmt = select(StoredEntity).where(StoredEntity.pk == pk, _not_expired(now))
        if sk_prefix:
            stmt = stmt.where(StoredEntity.sk.startswith(sk_prefix, autoescape=True))
        stmt = stmt.order_by(StoredEntity.sk.desc() if descending else StoredEntity.sk.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = self.db.scalars(stmt).all()
        return [_to_entity(row) for row in rows]

    def query_by_type(self, entity_type: str) -> list[Entity]:
        """Every live entity of one type across all partitions."""
        now = datetime.now(UTC)
        stmt = select(StoredEntity).where(StoredEntity.entity_type == entity_type, _not_expired(now))
        rows = self.db.scalars(stmt.order_by(StoredEntity.pk.asc(), StoredEntity.sk.asc())).all()
        return [_to_entity(row) for row in rows]

    def delete(self, pk: str, sk: str) -> bool:
        result = self.db.execute(delete(StoredEntity).where(StoredEntity.pk == pk, StoredEntity.sk == sk))
        self.db.commit()
        return bool(result.rowcount)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every entity whose retention window has passed."""
        cutoff = now or datetime.now(UTC)
        result = self.db.execute(
            delete(StoredEntity).where(StoredEntity.expires_at.is_not(None), StoredEntity.expires_at <= cutoff)
        )
        self.db.commit()
        return int(result.rowcount or 0)

    def _upsert(self, entity: Entity) -> Entity:
        row = self.db.get(StoredEntity, (entity.pk, entity.sk))
        if row is None:
            row = StoredEntity(pk=entity.pk, sk=entity.sk, version=1)
            self.db.add(row)
        else:
            row.version = (row.version or 0) + 1
        row.entity_type = entity.entity_type
        row.data = dict(entity.data)
        row.expires_at = entity.expires_at
        self.db.commit()
        return _to_entity(row)

    def _insert(self, entity: Entity) -> Entity:
        if self.db.get(StoredEntity, (entity.pk, entity.sk)) is not None:
            raise ConcurrentUpdateError(entity.pk, entity.sk, 0)
        row = StoredEntity(
            pk=entity.pk,
            sk=entity.sk,
            entity_type=entity.entity_type,
            data=dict(entity.data),
            version=1,
            expires_at=entity.expires_at,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConcurrentUpdateError(entity.pk, entity.sk, 0) from exc
        return _to_entity(row)

    def _compare_and_swap(self, entity: Entity, expected_version: int) -> Entity:
        result = self.db.execute(
            update(StoredEntity)
            .where(
                StoredEntity.pk == entity.pk,
                StoredEntity.sk == entity.sk,
                StoredEntity.version == expected_version,
            )
            .values(
                entity_type=entity.entity_type,
                data=dict(entity.data),
                expires_at=entity.expires_at,
                version=expected_version + 1,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConcurrentUpdateError(entity.pk, entity.sk, expected_version)
        self.db.commit()
        self.db.expire_all()
        return Entity(
            pk=entity.pk,
            sk=entity.sk,
            entity_type=entity.entity_type,
            data=dict(entity.data),
            version=expected_version + 1,
            expires_at=entity.expires_at,
        )
