"""Argument checks run before any tool touches the store.

Validation never raises: a bad or incomplete call becomes an ``Invalid``
carrying a question the assistant can put to the user word for word.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from crm_assistant.services.tool_registry import ALL_TOOLS, ToolName

# What the tool does, completing "To ... I still need ..."
_ACTIONS = {
    ToolName.search_contacts: "search contacts",
    ToolName.search_notes: "search notes",
    ToolName.create_contact: "create the contact",
    ToolName.add_note: "add the note",
    ToolName.create_deal: "create the deal",
    ToolName.update_deal_stage: "update the deal stage",
    ToolName.pipeline_summary: "summarize the pipeline",
    ToolName.suggest_followup_email: "draft the follow-up email",
    ToolName.web_search: "search the web",
}

_FIELD_LABELS = {
    "query": "what to search for",
    "entity_type": "whether this is for a contact or a deal",
    "entity_id": "the ID of the contact or deal",
    "text": "the note text",
    "title": "a title for the deal",
    "company_id": "the ID of the company the deal is with",
    "deal_id": "the ID of the deal",
    "stage": "the stage to move the deal to",
}

_CONTACT_IDENTITY_FIELDS = ("first_name", "last_name", "company_name", "company_id")
_CONTACT_CHANNEL_FIELDS = ("email", "phone")


@dataclass
class Valid:
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Invalid:
    prompt: str


ValidationOutcome = Valid | Invalid


def _join(items: list[str]) -> str:
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + " and " + items[-1]


def _parse_number(value: Any) -> float | None:
    """Finite float from a number or numeric string; NaN and inf are absent."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _coerce(value: Any, prop: dict) -> tuple[Any, str | None]:
    """Coerce one argument to its schema type.

    Returns ``(value, problem)``; a ``None`` value means the argument is
    treated as absent.
    """
    types = prop.get("type", "string")
    if isinstance(types, str):
        types = [types]

    if value is None:
        return None, None

    if "integer" in types or "number" in types:
        number = _parse_number(value)
        if number is None:
            return None, None
        if "integer" in types:
            if not number.is_integer():
                return None, None
            number = int(number)
        if "minimum" in prop and number < prop["minimum"]:
            return None, None
        if "maximum" in prop and number > prop["maximum"]:
            number = prop["maximum"]
        return number, None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None, None
    value = value.strip()
    if not value:
        return None, None

    enum = [option for option in prop.get("enum", []) if option is not None]
    if enum:
        for option in enum:
            if value.lower() == option.lower():
                return option, None
        return None, f"It has to be one of: {', '.join(enum)}."

    if prop.get("format") == "date":
        try:
            return date.fromisoformat(value), None
        except ValueError:
            return None, "Dates need to look like 2026-03-31."

    return value, None


def _decode(raw_arguments: Any) -> dict | None:
    if raw_arguments is None:
        return {}
    if isinstance(raw_arguments, str):
        if not raw_arguments.strip():
            return {}
        try:
            raw_arguments = json.loads(raw_arguments)
        except json.JSONDecodeError:
            return None
    return raw_arguments if isinstance(raw_arguments, dict) else None


def validate(tool_name: str, raw_arguments: Any) -> ValidationOutcome:
    """Check a tool call's arguments against the tool's schema and rules."""
    try:
        tool = ALL_TOOLS[ToolName(tool_name)]
    except ValueError:
        return Invalid(f"There is no tool called {tool_name!r}.")
    action = _ACTIONS[tool.name]

    decoded = _decode(raw_arguments)
    if decoded is None:
        return Invalid(
            f"I couldn't read the details needed to {action}. "
            "Could you restate them?"
        )

    properties = tool.argument_schema["properties"]
    arguments: dict[str, Any] = {}
    problems: list[str] = []
    for name, prop in properties.items():
        value, problem = _coerce(decoded.get(name), prop)
        if problem:
            label = _FIELD_LABELS.get(name, name.replace("_", " "))
            problems.append(f"I couldn't use {label}: {decoded.get(name)!r}. {problem}")
        if value is not None:
            arguments[name] = value

    missing = [
        _FIELD_LABELS.get(name, name.replace("_", " "))
        for name in tool.argument_schema["required"]
        if name not in arguments
    ]

    if tool.name is ToolName.create_contact:
        if not any(arguments.get(f) for f in _CONTACT_IDENTITY_FIELDS):
            missing.append("a name or company name")
        if not any(arguments.get(f) for f in _CONTACT_CHANNEL_FIELDS):
            missing.append("an email address or phone number")

    if not missing and not problems:
        return Valid(arguments)

    sentences = []
    if missing:
        sentences.append(f"To {action} I still need {_join(missing)}.")
    sentences.extend(problems)
    return Invalid(" ".join(sentences))
