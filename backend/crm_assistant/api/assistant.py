import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from crm_assistant.auth import CurrentUser
from crm_assistant.config import settings
from crm_assistant.database import get_db
from crm_assistant.integrations.claude_chat import ClaudeChatClient
from crm_assistant.integrations.tavily import TavilySearchClient
from crm_assistant.schemas.assistant import AssistantRequest, Message
from crm_assistant.services.executor import ActionExecutor
from crm_assistant.services.orchestrator import Orchestrator
from crm_assistant.services.store import CrmStore

router = APIRouter(prefix="/api/assistant", tags=["assistant"])

DbSession = Annotated[AsyncSession, Depends(get_db)]

logger = logging.getLogger(__name__)


def get_orchestrator(db: DbSession) -> Orchestrator:
    """Build the per-request orchestrator and its provider clients."""
    if not settings.anthropic_api_key:
        raise HTTPException(status_code=500, detail="ANTHROPIC_API_KEY is not set")

    model = ClaudeChatClient(api_key=settings.anthropic_api_key, model=settings.chat_model)
    search = (
        TavilySearchClient(settings.tavily_api_key, base_url=settings.tavily_base_url)
        if settings.tavily_api_key
        else None
    )
    executor = ActionExecutor(
        CrmStore(db),
        ClaudeChatClient(
            api_key=settings.anthropic_api_key, model=settings.followup_email_model
        ),
        search,
        search_max_results_cap=settings.search_max_results_cap,
    )
    return Orchestrator(model, executor, max_tool_turns=settings.max_tool_turns)


@router.post("", response_model=Message)
async def assistant(
    request: AssistantRequest,
    caller: CurrentUser,
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
) -> Message:
    """Answer the latest message of a chat, using CRM tools as needed."""
    logger.info(
        "Assistant request from user %d with %d messages", caller.id, len(request.messages)
    )
    return await orchestrator.respond(request.messages, caller, request.context)
