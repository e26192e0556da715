from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EventLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    event_type: str
    entity_type: str
    entity_id: int | None
    actor_id: int | None
    metadata: dict = Field(validation_alias="event_metadata")
    created_at: datetime
