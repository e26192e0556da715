from sqlalchemy.ext.asyncio import AsyncSession

from crm_assistant.models.event import EventLog


def log_event(
    db: AsyncSession,
    *,
    event_type: str,
    entity_type: str,
    entity_id: int | None = None,
    actor_id: int | None = None,
    metadata: dict | None = None,
) -> EventLog:
    """Create an EventLog and add it to the session.

    The caller is responsible for committing the session (``await db.commit()``)
    so the event lands in the same transaction as the write it describes.
    """
    event = EventLog(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        event_metadata=metadata or {},
    )
    db.add(event)
    return event
