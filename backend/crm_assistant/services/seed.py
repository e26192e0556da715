import logging
from pathlib import Path

import yaml
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_assistant.models.deal import DealStage

logger = logging.getLogger(__name__)

SEEDS_DIR = Path(__file__).resolve().parent.parent.parent / "seeds"


def load_stage_sets_yaml(name: str = "deal_stages") -> dict[str, list[str]]:
    """Load the default stage sets, keyed by deal kind."""
    path = SEEDS_DIR / f"{name}.yaml"
    with open(path) as f:
        return yaml.safe_load(f)["stage_sets"]


async def seed_deal_stages(db: AsyncSession, name: str = "deal_stages") -> int:
    """Seed stage sets from YAML. Idempotent -- skips kinds that already have rows.

    Returns the number of stage rows created.
    """
    stage_sets = load_stage_sets_yaml(name)
    created = 0

    for deal_kind, stages in stage_sets.items():
        result = await db.execute(
            select(DealStage.id).where(DealStage.deal_kind == deal_kind).limit(1)
        )
        if result.first() is not None:
            logger.info("Stage set '%s' already exists, skipping seed.", deal_kind)
            continue

        for position, stage in enumerate(stages):
            db.add(DealStage(deal_kind=deal_kind, stage=stage, position=position))
        created += len(stages)
        logger.info("Seeded stage set '%s' with %d stages.", deal_kind, len(stages))

    await db.commit()
    return created
