from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aura_runner.core.errors import StateConflictError
from aura_runner.models.db import WorkflowState


logger = logging.getLogger(__name__)

# Namespaces previously kept in browser storage by the admin / manager pages.
UPLOADS_NAMESPACE = "uploads"
CONTENT_HISTORY_NAMESPACE = "manager_content_history"
DRAFTS_NAMESPACE = "drafts"
AUTH_NAMESPACE = "auth"


@dataclass
class StateRecord:
    namespace: str
    key: str
    schema_version: int
    revision: int
    payload: Any
    updated_at: datetime | None


class StateRepository:
    """Versioned key/value store scoped to one namespace.

    Each record carries the ``schema_version`` it was written with. Records
    written under another version are dropped on read rather than handed to
    code that no longer understands them. ``revision`` increases on every
    write and backs optimistic concurrency through ``expected_revision``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        namespace: str,
        schema_version: int = 1,
    ) -> None:
        self._session_factory = session_factory
        self.namespace = namespace
        self.schema_version = schema_version

    async def get(self, key: str) -> Any:
        record = await self.get_record(key)
        return record.payload if record else None

    async def get_record(self, key: str) -> StateRecord | None:
        async with self._session_factory() as db:
            row = await self._load(db, key)
            if row is None:
                return None
            if row.schema_version != self.schema_version:
                logger.warning(
                    "Dropping state written with another schema version",
                    extra={
                        "namespace": self.namespace,
                        "key": key,
                        "stored_version": row.schema_version,
                        "expected_version": self.schema_version,
                    },
                )
                await db.delete(row)
                await db.commit()
                return None
            return _to_record(row)

    async def put(self, key: str, payload: Any, expected_revision: int | None = None) -> StateRecord:
        """Insert or update ``key``.

        With ``expected_revision`` the write only lands if the stored revision
        still matches (0 meaning "not stored yet"), otherwise
        ``StateConflictError`` is raised. The revision is compared inside the
        UPDATE statement. Without it the last write wins.
        """
        async with self._session_factory() as db:
            if expected_revision != 0 and await self._update(db, key, payload, expected_revision):
                return await self._commit(db, key)
            if expected_revision not in (None, 0):
                raise StateConflictError(self.namespace, key, expected_revision, await self._revision(db, key))

            db.add(
                WorkflowState(
                    namespace=self.namespace,
                    key=key,
                    schema_version=self.schema_version,
                    revision=1,
                    payload=payload,
                )
            )
            try:
                await db.flush()
            except IntegrityError:
                # another writer created the key first
                await db.rollback()
                if expected_revision == 0 or not await self._update(db, key, payload, None):
                    raise StateConflictError(self.namespace, key, 0, await self._revision(db, key))
            return await self._commit(db, key)

    async def delete(self, key: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(WorkflowState).where(
                    WorkflowState.namespace == self.namespace,
                    WorkflowState.key == key,
                )
            )
            await db.commit()
            return result.rowcount > 0

    async def keys(self) -> list[str]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowState.key)
                .where(WorkflowState.namespace == self.namespace)
                .order_by(WorkflowState.key.asc())
            )
            return list(result.scalars().all())

    async def clear(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(WorkflowState).where(WorkflowState.namespace == self.namespace)
            )
            await db.commit()
            logger.info("State namespace cleared", extra={"namespace": self.namespace, "count": result.rowcount})
            return result.rowcount

    async def _update(self, db: AsyncSession, key: str, payload: Any, expected_revision: int | None) -> bool:
        stmt = (
            update(WorkflowState)
            .where(WorkflowState.namespace == self.namespace, WorkflowState.key == key)
            .values(
                payload=payload,
                schema_version=self.schema_version,
                revision=WorkflowState.revision + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if expected_revision is not None:
            stmt = stmt.where(WorkflowState.revision == expected_revision)
        result = await db.execute(stmt)
        return result.rowcount > 0

    async def _revision(self, db: AsyncSession, key: str) -> int:
        result = await db.execute(
            select(WorkflowState.revision).where(
                WorkflowState.namespace == self.namespace,
                WorkflowState.key == key,
            )
        )
        return result.scalar_one_or_none() or 0

    async def _commit(self, db: AsyncSession, key: str) -> StateRecord:
        result = await db.execute(
            select(WorkflowState)
            .where(WorkflowState.namespace == self.namespace, WorkflowState.key == key)
            .execution_options(populate_existing=True)
        )
        record = _to_record(result.scalar_one())
        await db.commit()
        logger.debug(
            "State written",
            extra={"namespace": self.namespace, "key": key, "revision": record.revision},
        )
        return record

    async def _load(self, db: AsyncSession, key: str) -> WorkflowState | None:
        result = await db.execute(
            select(WorkflowState).where(
                WorkflowState.namespace == self.namespace,
                WorkflowState.key == key,
            )
        )
        return result.scalar_one_or_none()


def _to_record(row: WorkflowState) -> StateRecord:
    return StateRecord(
        namespace=row.namespace,
        key=row.key,
        schema_version=row.schema_version,
        revision=row.revision,
        payload=row.payload,
        updated_at=row.updated_at,
    )
