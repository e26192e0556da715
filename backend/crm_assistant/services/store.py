"""Record collections the assistant reads and writes.

Every write commits on its own: there is no multi-record transaction, so a
later write failing never undoes an earlier one. Each write is recorded in the
event log inside the same commit, attributed to the acting user.
"""

import logging
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_assistant.database import Base
from crm_assistant.services.event_log import log_event

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=Base)

# Singular names used in the event log
_ENTITY_TYPES = {
    "companies": "company",
    "contacts": "contact",
    "deals": "deal",
    "notes": "note",
}


def _entity_type(record: Base) -> str:
    table = record.__tablename__
    return _ENTITY_TYPES.get(table, table)


class CrmStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find(
        self,
        model: type[RecordT],
        *criteria: Any,
        order_by: Any = None,
        limit: int | None = None,
    ) -> list[RecordT]:
        query = select(model).where(*criteria)
        if isinstance(order_by, tuple):
            query = query.order_by(*order_by)
        elif order_by is not None:
            query = query.order_by(order_by)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get(self, model: type[RecordT], record_id: int) -> RecordT | None:
        return await self.db.get(model, record_id)

    async def insert(self, record: RecordT, *, actor_id: int | None = None) -> RecordT:
        self.db.add(record)
        try:
            await self.db.flush()
            log_event(
                self.db,
                event_type=f"{_entity_type(record)}_created",
                entity_type=_entity_type(record),
                entity_id=record.id,
                actor_id=actor_id,
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(record)
        logger.info("Inserted %s id=%s", _entity_type(record), record.id)
        return record

    async def update(
        self,
        model: type[RecordT],
        record_id: int,
        patch: dict[str, Any],
        *,
        actor_id: int | None = None,
    ) -> tuple[RecordT, dict[str, Any]] | None:
        """Apply ``patch`` to one record.

        Returns the updated record and the previous values of the patched
        fields, or None when no record has that id.
        """
        record = await self.db.get(model, record_id)
        if record is None:
            return None

        previous = {key: getattr(record, key) for key in patch}
        for key, value in patch.items():
            setattr(record, key, value)
        try:
            log_event(
                self.db,
                event_type=f"{_entity_type(record)}_updated",
                entity_type=_entity_type(record),
                entity_id=record.id,
                actor_id=actor_id,
                metadata={
                    "changes": {
                        key: {"old": previous[key], "new": value}
                        for key, value in patch.items()
                    }
                },
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(record)
        logger.info("Updated %s id=%s fields=%s", _entity_type(record), record.id, list(patch))
        return record, previous

    async def rollback(self) -> None:
        await self.db.rollback()
