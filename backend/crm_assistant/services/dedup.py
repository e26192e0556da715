import logging
import re

from sqlalchemy import func

from crm_assistant.models.company import Company
from crm_assistant.services.store import CrmStore

logger = logging.getLogger(__name__)

# Legal suffixes to strip (Dutch + international)
_LEGAL_SUFFIXES = re.compile(
    r"\b(b\.?v\.?|n\.?v\.?|gmbh|ltd\.?|inc\.?|llc|corp\.?|co\.?|s\.?a\.?|s\.?r\.?l\.?)\s*$",
    re.IGNORECASE,
)

# Characters to normalize
_NOISE_CHARS = re.compile(r"[&\-.,/\\|()\"']")


def normalize_company_name(name: str) -> str:
    """Normalize a company name for deduplication matching."""
    name = name.strip()
    if not name:
        return ""

    name = name.lower()
    name = _LEGAL_SUFFIXES.sub("", name)
    name = _NOISE_CHARS.sub(" ", name)
    name = re.sub(r"\s+", " ", name).strip()

    return name


async def find_company(store: CrmStore, raw_company_name: str) -> Company | None:
    """Look up a company by name.

    A case-insensitive exact match on the stored name wins over a match on the
    normalized name, so "Acme Inc" is picked over "ACME" when both exist.
    """
    name = raw_company_name.strip()
    if not name:
        return None

    exact = await store.find(
        Company,
        func.lower(Company.name) == name.lower(),
        order_by=Company.id,
        limit=1,
    )
    if exact:
        return exact[0]

    normalized = normalize_company_name(name)
    if not normalized:
        return None
    fuzzy = await store.find(
        Company,
        Company.normalized_name == normalized,
        order_by=Company.id,
        limit=1,
    )
    return fuzzy[0] if fuzzy else None


async def find_or_create_company(
    store: CrmStore, raw_company_name: str, *, owner_id: int | None = None
) -> tuple[Company, bool]:
    """Find an existing company by name, or create a new one.

    Returns the company and whether it was created.
    """
    company = await find_company(store, raw_company_name)
    if company:
        return company, False

    name = raw_company_name.strip()
    company = await store.insert(
        Company(
            name=name,
            normalized_name=normalize_company_name(name),
            owner_id=owner_id,
        ),
        actor_id=owner_id,
    )
    logger.info("Created company %r (id=%d)", company.name, company.id)
    return company, True
