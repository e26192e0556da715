import logging

from crm_assistant.models.deal import DEAL_KINDS, DealStage
from crm_assistant.services.store import CrmStore

logger = logging.getLogger(__name__)

DEFAULT_DEAL_KIND = "sales"

# Entry stage used when no stage rows are configured for a kind
FALLBACK_STAGES = {
    "sales": "Lead",
    "procurement": "Sourcing",
    "partnership": "Lead",
}


class StageModel:
    """Ordered pipeline stages per deal kind.

    Stage sets are admin-editable, so every call reads the store.
    """

    def __init__(self, store: CrmStore):
        self.store = store

    async def stages_for(self, deal_kind: str) -> list[str]:
        rows = await self.store.find(
            DealStage,
            DealStage.deal_kind == deal_kind,
            order_by=DealStage.position,
        )
        return [row.stage for row in rows]

    async def default_stage(self, deal_kind: str) -> str:
        stages = await self.stages_for(deal_kind)
        if stages:
            return stages[0]
        fallback = FALLBACK_STAGES.get(deal_kind, FALLBACK_STAGES[DEFAULT_DEAL_KIND])
        logger.warning(
            "No stages configured for deal kind %r, falling back to %r",
            deal_kind,
            fallback,
        )
        return fallback

    async def stage_vocabulary(self) -> dict[str, list[str]]:
        """All configured stage sets, keyed by deal kind."""
        rows = await self.store.find(
            DealStage,
            order_by=(DealStage.deal_kind, DealStage.position),
        )
        vocabulary: dict[str, list[str]] = {kind: [] for kind in DEAL_KINDS}
        for row in rows:
            vocabulary.setdefault(row.deal_kind, []).append(row.stage)
        return vocabulary
