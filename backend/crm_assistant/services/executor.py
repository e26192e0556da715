import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select

from crm_assistant.integrations.claude_chat import ClaudeChatClient
from crm_assistant.integrations.tavily import TavilySearchClient
from crm_assistant.models.company import Company
from crm_assistant.models.contact import Contact
from crm_assistant.models.deal import Deal
from crm_assistant.models.note import Note
from crm_assistant.schemas.assistant import CallerIdentity
from crm_assistant.services.dedup import find_or_create_company
from crm_assistant.services.pipeline import summarize_pipeline, window_bounds
from crm_assistant.services.results import NeedsInfo, Success, ToolError, ToolResult
from crm_assistant.services.stages import DEFAULT_DEAL_KIND, StageModel
from crm_assistant.services.store import CrmStore
from crm_assistant.services.tool_registry import Capabilities, ToolName

logger = logging.getLogger(__name__)

SEARCH_CONTACTS_LIMIT = 25
SEARCH_NOTES_LIMIT = 50
FOLLOWUP_NOTES_LIMIT = 5
DEFAULT_WEB_RESULTS = 5

FOLLOWUP_SYSTEM_PROMPT = (
    "You write short, friendly business follow-up emails for a CRM user. "
    "Use only the facts you are given. Output only the email body: no subject "
    "line, no commentary, no placeholders for facts you were not given."
)

NOTE_ON_COMPANY_GUIDANCE = (
    "Notes can only be attached to a contact or a deal, not directly to a "
    "company. Which contact or deal at that company should the note go on?"
)

Handler = Callable[[dict[str, Any], CallerIdentity], Awaitable[ToolResult]]


def _contact_dict(contact: Contact, company_name: str | None = None) -> dict:
    return {
        "id": contact.id,
        "first_name": contact.first_name,
        "last_name": contact.last_name,
        "email": contact.email,
        "phone": contact.phone,
        "title": contact.title,
        "company_id": contact.company_id,
        "company_name": company_name,
    }


def _deal_dict(deal: Deal) -> dict:
    return {
        "id": deal.id,
        "title": deal.title,
        "deal_kind": deal.deal_kind,
        "stage": deal.stage,
        "amount": deal.amount,
        "cost": deal.cost,
        "company_id": deal.company_id,
        "contact_id": deal.contact_id,
        "expected_closing_date": (
            deal.expected_closing_date.isoformat() if deal.expected_closing_date else None
        ),
    }


def _note_dict(note: Note) -> dict:
    return {
        "id": note.id,
        "entity_type": note.entity_type,
        "entity_id": note.entity_id,
        "text": note.text,
        "created_at": note.created_at.isoformat() if note.created_at else None,
    }


def _like_pattern(text: str) -> str:
    """Substring pattern for ILIKE with the wildcards in ``text`` escaped."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _error_reason(exc: Exception) -> str:
    # SQLAlchemy wraps the driver error; the driver message is the readable part
    return str(getattr(exc, "orig", None) or exc)


class ActionExecutor:
    """Runs validated tool calls against the store and external providers.

    All side effects of the assistant happen here. Failures never escape
    ``execute``: they come back as ``ToolError`` so the model can explain them.
    """

    def __init__(
        self,
        store: CrmStore,
        model: ClaudeChatClient,
        search: TavilySearchClient | None = None,
        *,
        search_max_results_cap: int = 10,
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.model = model
        self.search = search
        self.stages = StageModel(store)
        self.search_max_results_cap = search_max_results_cap
        self._now = now or (lambda: datetime.now().astimezone())
        self.handlers: dict[ToolName, Handler] = {
            ToolName.search_contacts: self._search_contacts,
            ToolName.search_notes: self._search_notes,
            ToolName.create_contact: self._create_contact,
            ToolName.add_note: self._add_note,
            ToolName.create_deal: self._create_deal,
            ToolName.update_deal_stage: self._update_deal_stage,
            ToolName.pipeline_summary: self._pipeline_summary,
            ToolName.suggest_followup_email: self._suggest_followup_email,
            ToolName.web_search: self._web_search,
        }

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities(web_search=self.search is not None)

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        caller: CallerIdentity,
    ) -> ToolResult:
        try:
            handler = self.handlers[ToolName(tool_name)]
        except ValueError:
            return ToolError(f"Unknown tool: {tool_name}")

        logger.info("Executing tool %s for user %d", tool_name, caller.id)
        try:
            return await handler(arguments, caller)
        except Exception as exc:
            logger.exception("Tool handler error: %s", tool_name)
            await self.store.rollback()
            return ToolError(_error_reason(exc))

    async def _search_contacts(self, args: dict, caller: CallerIdentity) -> ToolResult:
        pattern = _like_pattern(args["query"])
        full_name = (
            func.coalesce(Contact.first_name, "") + " " + func.coalesce(Contact.last_name, "")
        )
        contacts = await self.store.find(
            Contact,
            or_(
                Contact.first_name.ilike(pattern, escape="\\"),
                Contact.last_name.ilike(pattern, escape="\\"),
                full_name.ilike(pattern, escape="\\"),
                Contact.email.ilike(pattern, escape="\\"),
                Contact.company_id.in_(
                    select(Company.id).where(Company.name.ilike(pattern, escape="\\"))
                ),
            ),
            order_by=Contact.id,
            limit=SEARCH_CONTACTS_LIMIT,
        )

        company_ids = {c.company_id for c in contacts if c.company_id is not None}
        names: dict[int, str] = {}
        if company_ids:
            companies = await self.store.find(Company, Company.id.in_(company_ids))
            names = {company.id: company.name for company in companies}

        return Success(
            {
                "contacts": [_contact_dict(c, names.get(c.company_id)) for c in contacts],
                "count": len(contacts),
            }
        )

    async def _search_notes(self, args: dict, caller: CallerIdentity) -> ToolResult:
        criteria = [Note.text.ilike(_like_pattern(args["query"]), escape="\\")]
        if "entity_type" in args:
            criteria.append(Note.entity_type == args["entity_type"])
        if "entity_id" in args:
            criteria.append(Note.entity_id == args["entity_id"])

        notes = await self.store.find(
            Note,
            *criteria,
            order_by=(Note.created_at.desc(), Note.id.desc()),
            limit=SEARCH_NOTES_LIMIT,
        )
        return Success({"notes": [_note_dict(n) for n in notes], "count": len(notes)})

    async def _create_contact(self, args: dict, caller: CallerIdentity) -> ToolResult:
        company: Company | None = None
        company_created = False
        if "company_id" in args:
            company = await self.store.get(Company, args["company_id"])
            if company is None:
                return ToolError(f"Company {args['company_id']} not found")
        elif "company_name" in args:
            company, company_created = await find_or_create_company(
                self.store, args["company_name"], owner_id=caller.id
            )

        contact = await self.store.insert(
            Contact(
                first_name=args.get("first_name"),
                last_name=args.get("last_name"),
                email=args.get("email"),
                phone=args.get("phone"),
                title=args.get("title"),
                company_id=company.id if company else None,
                owner_id=caller.id,
            ),
            actor_id=caller.id,
        )
        payload: dict[str, Any] = {
            "contact": _contact_dict(contact, company.name if company else None),
            "company": (
                {"id": company.id, "name": company.name, "created": company_created}
                if company
                else None
            ),
        }

        contact_id = contact.id
        if "note" in args:
            # The contact stays even if the note cannot be written
            try:
                note = await self.store.insert(
                    Note(
                        entity_type="contact",
                        entity_id=contact_id,
                        text=args["note"],
                        author_id=caller.id,
                    ),
                    actor_id=caller.id,
                )
            except Exception as exc:
                logger.warning(
                    "Contact %d created but its note failed: %s", contact_id, exc
                )
                payload["warning"] = (
                    "The contact was created, but the note could not be saved: "
                    f"{_error_reason(exc)}"
                )
            else:
                payload["note_id"] = note.id

        return Success(payload)

    async def _add_note(self, args: dict, caller: CallerIdentity) -> ToolResult:
        entity_type = args["entity_type"]
        if entity_type == "company":
            return NeedsInfo(NOTE_ON_COMPANY_GUIDANCE)

        model = Contact if entity_type == "contact" else Deal
        if await self.store.get(model, args["entity_id"]) is None:
            return ToolError(f"{entity_type.capitalize()} {args['entity_id']} not found")

        note = await self.store.insert(
            Note(
                entity_type=entity_type,
                entity_id=args["entity_id"],
                text=args["text"],
                author_id=caller.id,
            ),
            actor_id=caller.id,
        )
        return Success({"note": _note_dict(note)})

    async def _create_deal(self, args: dict, caller: CallerIdentity) -> ToolResult:
        deal_kind = args.get("deal_kind") or DEFAULT_DEAL_KIND
        stage = args.get("stage") or await self.stages.default_stage(deal_kind)

        # The deal kind decides which field holds the value; the matching argument wins
        if deal_kind == "procurement":
            amount, cost = None, args.get("cost", args.get("amount"))
        else:
            amount, cost = args.get("amount", args.get("cost")), None

        deal = await self.store.insert(
            Deal(
                title=args["title"],
                description=args.get("description"),
                deal_kind=deal_kind,
                stage=stage,
                amount=amount,
                cost=cost,
                company_id=args["company_id"],
                contact_id=args.get("contact_id"),
                expected_closing_date=args.get("expected_closing_date"),
                owner_id=caller.id,
            ),
            actor_id=caller.id,
        )
        return Success({"deal": _deal_dict(deal)})

    async def _update_deal_stage(self, args: dict, caller: CallerIdentity) -> ToolResult:
        # Stage sets are admin-configurable; any stage name is passed through
        updated = await self.store.update(
            Deal, args["deal_id"], {"stage": args["stage"]}, actor_id=caller.id
        )
        if updated is None:
            return ToolError(f"Deal {args['deal_id']} not found")

        deal, previous = updated
        return Success(
            {
                "deal_id": deal.id,
                "old_stage": previous["stage"],
                "new_stage": deal.stage,
            }
        )

    async def _pipeline_summary(self, args: dict, caller: CallerIdentity) -> ToolResult:
        time_window = args.get("time_window") or "month"
        start, end = window_bounds(self._now(), time_window)

        deals = await self.store.find(
            Deal, Deal.created_at >= start, Deal.created_at < end
        )
        return Success(
            {
                "time_window": time_window,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "total_deals": len(deals),
                "pipeline": summarize_pipeline(deals),
            }
        )

    async def _suggest_followup_email(
        self, args: dict, caller: CallerIdentity
    ) -> ToolResult:
        entity_type = args["entity_type"]
        entity_id = args["entity_id"]

        facts: list[str] = []
        if entity_type == "deal":
            deal = await self.store.get(Deal, entity_id)
            if deal is None:
                return ToolError(f"Deal {entity_id} not found")
            company = await self.store.get(Company, deal.company_id)
            facts += [
                f"Deal: {deal.title}",
                f"Deal kind: {deal.deal_kind or 'unknown'}",
                f"Current stage: {deal.stage}",
                f"Company: {company.name if company else 'unknown'}",
            ]
            value = deal.cost if deal.deal_kind == "procurement" else deal.amount
            if value is not None:
                facts.append(f"Value: {value:g}")
        else:
            contact = await self.store.get(Contact, entity_id)
            if contact is None:
                return ToolError(f"Contact {entity_id} not found")
            facts.append(f"Recipient: {contact.full_name or contact.email}")
            if contact.title:
                facts.append(f"Recipient title: {contact.title}")
            if contact.company_id is not None:
                company = await self.store.get(Company, contact.company_id)
                if company:
                    facts.append(f"Company: {company.name}")

        notes = await self.store.find(
            Note,
            Note.entity_type == entity_type,
            Note.entity_id == entity_id,
            order_by=(Note.created_at.desc(), Note.id.desc()),
            limit=FOLLOWUP_NOTES_LIMIT,
        )

        prompt_lines = ["Write a follow-up email.", "", *facts, "", "Recent notes (newest first):"]
        prompt_lines += [f"- {n.text}" for n in notes] or ["- (no notes yet)"]
        if args.get("goal"):
            prompt_lines += ["", f"Goal of the email: {args['goal']}"]

        # Nested call without tools, so it cannot start another tool loop
        body = await self.model.complete_text(FOLLOWUP_SYSTEM_PROMPT, "\n".join(prompt_lines))
        return Success(
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "notes_used": len(notes),
                "email_body": body,
            }
        )

    async def _web_search(self, args: dict, caller: CallerIdentity) -> ToolResult:
        if self.search is None:
            return ToolError("web_search is not configured")

        max_results = min(
            args.get("max_results", DEFAULT_WEB_RESULTS), self.search_max_results_cap
        )
        results = await self.search.search(args["query"], max_results=max_results)
        return Success(
            {
                "query": args["query"],
                "results": [r.to_dict() for r in results],
            }
        )
