"""Bounded tool-use loop behind the assistant endpoint.

Each round sends the history to the model. A reply without tool calls ends
the request. Otherwise only the first tool call is run, its result is
appended to the history, and the model is asked again, for at most
``max_tool_turns`` rounds.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from crm_assistant.integrations.claude_chat import ClaudeChatClient
from crm_assistant.models.deal import DEAL_KINDS
from crm_assistant.schemas.assistant import (
    AssistantContext,
    CallerIdentity,
    Message,
    MessageKind,
    ToolCall,
)
from crm_assistant.services.ask_confirm import PROTOCOL_INSTRUCTIONS, annotate_reply
from crm_assistant.services.executor import ActionExecutor
from crm_assistant.services.results import NeedsInfo, ToolError, ToolResult
from crm_assistant.services.tool_registry import list_tools, to_provider_tools
from crm_assistant.services.validation import Invalid, validate

logger = logging.getLogger(__name__)

MAX_TOOL_TURNS = 3

FALLBACK_REPLY = "Let's continue. What should I do next?"
MODEL_ERROR_REPLY = "Sorry, I couldn't process that right now. Error: {error}"

SYSTEM_PROMPT = (
    "You are the in-app CRM assistant. You help the user find and update "
    "contacts, companies, deals and notes.\n\n"
    "Tool policy:\n"
    "- Ask clarifying questions when a request is ambiguous (e.g. geography, "
    "industry, role, which record).\n"
    "- For CRM questions (contacts, notes, deals, pipeline) use the CRM tools "
    "first.\n"
    "- When looking for new leads that are not in the CRM, use web_search if "
    "it is available, summarize the findings and propose which to add as "
    "contacts.\n"
    "- Suggest creating a deal when the user's intent implies an opportunity; "
    "ask for the amount and stage if they are missing.\n"
    "- Never invent record IDs. Look records up first.\n"
    "- Keep answers concise, then offer next actions as options.\n\n"
    "{protocol}\n\n"
    "Pipeline stages by deal kind (first stage is the default for new deals):\n"
    "{stages}\n"
    "{context_block}"
)


def _format_stages(vocabulary: dict[str, list[str]]) -> str:
    lines = []
    for kind, stages in vocabulary.items():
        lines.append(f"- {kind}: {', '.join(stages) if stages else '(not configured)'}")
    return "\n".join(lines)


def _build_context_block(context: AssistantContext | None, extra: list[str]) -> str:
    """Context string from the optional AssistantContext and caller system messages."""
    parts: list[str] = []

    if context and context.mode != "auto":
        parts.append(
            f"Assistant mode is {context.mode}: use deal_kind={context.mode} for "
            "new deals unless the user says otherwise"
        )
    if context and context.scope:
        parts.append(f"User is on the '{context.scope}' page")
    if context and context.contact_id is not None:
        parts.append(f"User is viewing contact ID {context.contact_id}")
    if context and context.deal_id is not None:
        parts.append(f"User is viewing deal ID {context.deal_id}")

    block = ""
    if parts:
        block = "\nCurrent context:\n" + "\n".join(f"- {p}" for p in parts) + "\n"
    if extra:
        block += "\n" + "\n".join(extra) + "\n"
    return block


class Orchestrator:
    def __init__(
        self,
        model: ClaudeChatClient,
        executor: ActionExecutor,
        *,
        max_tool_turns: int = MAX_TOOL_TURNS,
    ):
        self.model = model
        self.executor = executor
        self.max_tool_turns = max_tool_turns
        # Presented tools and dispatchable tools come from the same capabilities
        self.tools = list_tools(executor.capabilities)
        self._tool_names = {tool.name.value for tool in self.tools}

    async def build_system_prompt(
        self, context: AssistantContext | None, extra: list[str]
    ) -> str:
        try:
            vocabulary = await self.executor.stages.stage_vocabulary()
        except SQLAlchemyError:
            logger.exception("Could not load deal stages for the system prompt")
            await self.executor.store.rollback()
            vocabulary = {kind: [] for kind in DEAL_KINDS}
        return SYSTEM_PROMPT.format(
            protocol=PROTOCOL_INSTRUCTIONS,
            stages=_format_stages(vocabulary),
            context_block=_build_context_block(context, extra),
        )

    async def respond(
        self,
        history: list[Message],
        caller: CallerIdentity,
        context: AssistantContext | None = None,
    ) -> Message:
        """Answer the latest user message, running tools as the model asks."""
        caller_system = [m.content for m in history if m.role == "system" and m.content]
        system = await self.build_system_prompt(context, caller_system)
        conversation = [m for m in history if m.role != "system"]
        provider_tools = to_provider_tools(self.tools)

        for turn in range(self.max_tool_turns):
            logger.info("Assistant round %d: sending %d messages", turn + 1, len(conversation))
            try:
                reply = await self.model.complete(system, list(conversation), provider_tools)
            except Exception as exc:
                logger.error("Assistant model call failed: %s", exc)
                return Message(role="assistant", content=MODEL_ERROR_REPLY.format(error=exc))

            if not reply.tool_calls:
                kind, body = annotate_reply(reply.content)
                return Message(role="assistant", content=body, kind=kind)

            if len(reply.tool_calls) > 1:
                logger.info(
                    "Model requested %d tool calls, running only %s",
                    len(reply.tool_calls),
                    reply.tool_calls[0].name,
                )
            call = reply.tool_calls[0]
            result = await self._run_tool(call, caller)

            conversation.append(
                Message(role="assistant", content=reply.content, tool_calls=[call])
            )
            conversation.append(
                Message(role="tool", content=result.to_content(), tool_call_id=call.id)
            )

        logger.info("Assistant hit %d tool rounds without a final reply", self.max_tool_turns)
        return Message(role="assistant", content=FALLBACK_REPLY, kind=MessageKind.plain)

    async def _run_tool(self, call: ToolCall, caller: CallerIdentity) -> ToolResult:
        if call.name not in self._tool_names:
            logger.warning("Model called unknown tool %r", call.name)
            return ToolError(f"Unknown tool: {call.name}")

        outcome = validate(call.name, call.arguments)
        if isinstance(outcome, Invalid):
            logger.info("Tool %s needs more info: %s", call.name, outcome.prompt)
            return NeedsInfo(outcome.prompt)

        result = await self.executor.execute(call.name, outcome.arguments, caller)
        logger.info("Tool %s finished: %s", call.name, type(result).__name__)
        return result
