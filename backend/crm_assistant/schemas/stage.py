from pydantic import BaseModel


class DealStageSetResponse(BaseModel):
    deal_kind: str
    stages: list[str]
    default_stage: str
