from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from crm_assistant.database import get_db
from crm_assistant.models.deal import DEAL_KINDS
from crm_assistant.schemas.stage import DealStageSetResponse
from crm_assistant.services.stages import StageModel
from crm_assistant.services.store import CrmStore

router = APIRouter(prefix="/api/deal-stages", tags=["deal-stages"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


@router.get("/{deal_kind}", response_model=DealStageSetResponse)
async def get_stage_set(deal_kind: str, db: DbSession) -> DealStageSetResponse:
    """Ordered stages for one deal kind, for the deal form's stage picker."""
    if deal_kind not in DEAL_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown deal kind: {deal_kind}")

    model = StageModel(CrmStore(db))
    return DealStageSetResponse(
        deal_kind=deal_kind,
        stages=await model.stages_for(deal_kind),
        default_stage=await model.default_stage(deal_kind),
    )
