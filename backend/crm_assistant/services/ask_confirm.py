"""Ask/confirm protocol between the model and the chat surface.

The model marks clarifying questions and write proposals with a text prefix.
The prefix is parsed once, when the reply leaves the orchestrator, and turned
into ``Message.kind``; the chat surface only looks at ``kind``. When history
goes back to the model the prefix is put back so the model sees its own
protocol turns.
"""

from crm_assistant.schemas.assistant import Message, MessageKind
from crm_assistant.services.tool_registry import WRITE_TOOLS

ASK_MARKER = "[ASK]"
CONFIRM_MARKER = "[CONFIRM]"

_MARKERS = {
    MessageKind.ask: ASK_MARKER,
    MessageKind.confirm: CONFIRM_MARKER,
}

PROTOCOL_INSTRUCTIONS = "\n".join(
    [
        "Clarify and confirm protocol:",
        f"- When you need more information from the user, start your reply with "
        f"{ASK_MARKER} followed by the question. Do not call a tool in that turn.",
        f"- When a tool result has status needs_info, reply with {ASK_MARKER} "
        "followed by its prompt text exactly as given.",
        f"- Before you WRITE data ({', '.join(sorted(t.value for t in WRITE_TOOLS))}), "
        f"reply with {CONFIRM_MARKER} followed by a short "
        "summary of exactly what you will do, and wait. Only call the tool after "
        "the user's next message approves it. If the user declines, drop the plan.",
        "- Never put either marker anywhere except at the very start of a reply.",
    ]
)


def annotate_reply(text: str) -> tuple[MessageKind, str]:
    """Split a model reply into its protocol kind and the text to show."""
    stripped = text.lstrip()
    for kind, marker in _MARKERS.items():
        if stripped.startswith(marker):
            return kind, stripped[len(marker):].lstrip()
    return MessageKind.plain, text


def render_for_model(message: Message) -> str:
    """Message content as the model originally wrote it."""
    marker = _MARKERS.get(message.kind)
    if marker and message.role == "assistant":
        return f"{marker} {message.content}"
    return message.content
