"""Tool catalogue offered to the model.

Each argument schema is the one description of a tool's arguments: it is
sent to the model as-is and drives local validation in
``crm_assistant.services.validation``.
"""

from dataclasses import dataclass, replace
from enum import Enum

from crm_assistant.models.deal import DEAL_KINDS


class ToolName(str, Enum):
    search_contacts = "search_contacts"
    search_notes = "search_notes"
    create_contact = "create_contact"
    add_note = "add_note"
    create_deal = "create_deal"
    update_deal_stage = "update_deal_stage"
    pipeline_summary = "pipeline_summary"
    suggest_followup_email = "suggest_followup_email"
    web_search = "web_search"


WRITE_TOOLS = frozenset(
    {
        ToolName.create_contact,
        ToolName.add_note,
        ToolName.create_deal,
        ToolName.update_deal_stage,
    }
)

TIME_WINDOWS = ("month", "quarter", "year")


@dataclass(frozen=True)
class Capabilities:
    """Optional providers configured for this process."""

    web_search: bool = False


@dataclass(frozen=True)
class ToolDefinition:
    name: ToolName
    description: str
    argument_schema: dict
    enabled: bool = True

    def to_provider_tool(self) -> dict:
        """Tool definition in the Anthropic tool_use JSON schema format."""
        return {
            "name": self.name.value,
            "description": self.description,
            "input_schema": self.argument_schema,
        }


def _schema(properties: dict, required: list[str] | None = None) -> dict:
    return {
        "type": "object",
        "properties": properties,
        "required": required or [],
    }


_ENTITY_ID = {"type": "integer", "minimum": 1}

_BASE_TOOLS: list[ToolDefinition] = [
    ToolDefinition(
        name=ToolName.search_contacts,
        description=(
            "Search CRM contacts by partial name, email or company name "
            "(case-insensitive). Returns at most 25 contacts."
        ),
        argument_schema=_schema(
            {
                "query": {
                    "type": "string",
                    "description": "Text to match against name, email or company",
                },
            },
            ["query"],
        ),
    ),
    ToolDefinition(
        name=ToolName.search_notes,
        description=(
            "Search notes by partial text, newest first. Optionally restrict "
            "to the notes of one contact or deal. Returns at most 50 notes."
        ),
        argument_schema=_schema(
            {
                "query": {"type": "string", "description": "Text to search for"},
                "entity_type": {
                    "type": ["string", "null"],
                    "enum": ["contact", "deal", None],
                    "description": "Only notes attached to this kind of record",
                },
                "entity_id": {
                    **_ENTITY_ID,
                    "type": ["integer", "null"],
                    "description": "Only notes attached to this record",
                },
            },
            ["query"],
        ),
    ),
    ToolDefinition(
        name=ToolName.create_contact,
        description=(
            "Create a new contact. Needs a name or company, and an email or "
            "phone number. A company given by name is reused if it exists, "
            "otherwise created. An optional note is attached to the contact."
        ),
        argument_schema=_schema(
            {
                "first_name": {"type": ["string", "null"]},
                "last_name": {"type": ["string", "null"]},
                "email": {"type": ["string", "null"]},
                "phone": {"type": ["string", "null"]},
                "title": {"type": ["string", "null"], "description": "Job title"},
                "company_id": {**_ENTITY_ID, "type": ["integer", "null"]},
                "company_name": {"type": ["string", "null"]},
                "note": {
                    "type": ["string", "null"],
                    "description": "Note to attach to the new contact",
                },
            },
        ),
    ),
    ToolDefinition(
        name=ToolName.add_note,
        description="Attach a note to a contact or a deal.",
        argument_schema=_schema(
            {
                "entity_type": {"type": "string", "enum": ["contact", "company", "deal"]},
                "entity_id": {**_ENTITY_ID, "description": "ID of the record"},
                "text": {"type": "string", "description": "The note text"},
            },
            ["entity_type", "entity_id", "text"],
        ),
    ),
    ToolDefinition(
        name=ToolName.create_deal,
        description=(
            "Create a new deal/opportunity with a company. The stage defaults "
            "to the first stage of the deal kind. For procurement deals the "
            "value is recorded as cost, otherwise as amount."
        ),
        argument_schema=_schema(
            {
                "title": {"type": "string"},
                "company_id": {
                    **_ENTITY_ID,
                    "description": "ID of the counterpart company",
                },
                "contact_id": {**_ENTITY_ID, "type": ["integer", "null"]},
                "deal_kind": {
                    "type": ["string", "null"],
                    "enum": [*DEAL_KINDS, None],
                },
                "amount": {"type": ["number", "null"]},
                "cost": {"type": ["number", "null"]},
                "stage": {"type": ["string", "null"]},
                "description": {"type": ["string", "null"]},
                "expected_closing_date": {
                    "type": ["string", "null"],
                    "format": "date",
                    "description": "YYYY-MM-DD",
                },
            },
            ["title", "company_id"],
        ),
    ),
    ToolDefinition(
        name=ToolName.update_deal_stage,
        description="Move a deal to a new pipeline stage.",
        argument_schema=_schema(
            {
                "deal_id": _ENTITY_ID,
                "stage": {"type": "string"},
            },
            ["deal_id", "stage"],
        ),
    ),
    ToolDefinition(
        name=ToolName.pipeline_summary,
        description=(
            "Summarize deal counts and values per deal kind for deals created "
            "in the current calendar month (default), quarter or year."
        ),
        argument_schema=_schema(
            {
                "time_window": {
                    "type": ["string", "null"],
                    "enum": [*TIME_WINDOWS, None],
                },
            },
        ),
    ),
    ToolDefinition(
        name=ToolName.suggest_followup_email,
        description=(
            "Draft a follow-up email for a contact or deal based on its most "
            "recent notes. Returns only the email body."
        ),
        argument_schema=_schema(
            {
                "entity_type": {"type": "string", "enum": ["contact", "deal"]},
                "entity_id": _ENTITY_ID,
                "goal": {
                    "type": ["string", "null"],
                    "description": "What the email should achieve",
                },
            },
            ["entity_type", "entity_id"],
        ),
    ),
]

_WEB_SEARCH_TOOL = ToolDefinition(
    name=ToolName.web_search,
    description=(
        "Search the web for leads or info (companies, contacts, roles, "
        "industries). Use when data may not exist in the CRM."
    ),
    argument_schema=_schema(
        {
            "query": {"type": "string"},
            "max_results": {
                "type": ["integer", "null"],
                "minimum": 1,
                "maximum": 10,
            },
        },
        ["query"],
    ),
)

ALL_TOOLS: dict[ToolName, ToolDefinition] = {
    tool.name: tool for tool in [*_BASE_TOOLS, _WEB_SEARCH_TOOL]
}


def catalogue(capabilities: Capabilities) -> list[ToolDefinition]:
    """Every known tool, flagged enabled or not for the given capabilities."""
    return [
        *_BASE_TOOLS,
        replace(_WEB_SEARCH_TOOL, enabled=capabilities.web_search),
    ]


def list_tools(capabilities: Capabilities) -> list[ToolDefinition]:
    """Tools available for the given capabilities, in a fixed order."""
    return [tool for tool in catalogue(capabilities) if tool.enabled]


def to_provider_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [tool.to_provider_tool() for tool in tools if tool.enabled]
