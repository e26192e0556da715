import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from crm_assistant.integrations.claude_chat import ModelReply
from crm_assistant.schemas.assistant import (
    AssistantContext,
    CallerIdentity,
    Message,
    MessageKind,
    ToolCall,
)
from crm_assistant.services.executor import ActionExecutor
from crm_assistant.services.orchestrator import FALLBACK_REPLY, Orchestrator
from crm_assistant.services.results import Success
from crm_assistant.services.tool_registry import Capabilities

CALLER = CallerIdentity(id=1, email="sam@example.com", full_name="Sam Seller")


@pytest.fixture(autouse=True)
async def setup_db():
    """Override the global setup_db fixture: the store is mocked here."""
    yield


@pytest.fixture
def mock_store() -> MagicMock:
    store = MagicMock()
    store.find = AsyncMock(return_value=[])
    store.get = AsyncMock(return_value=None)
    store.insert = AsyncMock()
    store.update = AsyncMock()
    store.rollback = AsyncMock()
    return store


@pytest.fixture
def mock_executor() -> MagicMock:
    executor = MagicMock()
    executor.capabilities = Capabilities()
    executor.stages.stage_vocabulary = AsyncMock(
        return_value={"sales": ["Lead", "Won"], "procurement": ["Sourcing"], "partnership": []}
    )
    executor.execute = AsyncMock(return_value=Success({"contacts": [], "count": 0}))
    executor.store.rollback = AsyncMock()
    return executor


def _tool_reply(*calls: tuple[str, dict]) -> ModelReply:
    return ModelReply(
        tool_calls=[
            ToolCall(id=f"toolu_{i}", name=name, arguments=arguments)
            for i, (name, arguments) in enumerate(calls, start=1)
        ]
    )


def _user(text: str) -> list[Message]:
    return [Message(role="user", content=text)]


@pytest.mark.asyncio
async def test_direct_answer(chat_model, mock_executor):
    chat_model.complete.return_value = ModelReply(content="You have no open deals.")
    orchestrator = Orchestrator(chat_model, mock_executor)

    reply = await orchestrator.respond(_user("How is my pipeline?"), CALLER)

    assert reply == Message(role="assistant", content="You have no open deals.")
    assert chat_model.complete.await_count == 1
    mock_executor.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_system_prompt_carries_stages_protocol_and_context(chat_model, mock_executor):
    chat_model.complete.return_value = ModelReply(content="ok")
    orchestrator = Orchestrator(chat_model, mock_executor)
    history = [
        Message(role="system", content="Answer in Dutch."),
        Message(role="user", content="hoi"),
    ]

    await orchestrator.respond(
        history, CALLER, AssistantContext(mode="procurement", contact_id=12)
    )

    system, sent_history, tools = chat_model.complete.call_args.args
    assert "- sales: Lead, Won" in system
    assert "- partnership: (not configured)" in system
    assert "[ASK]" in system and "[CONFIRM]" in system
    assert "use deal_kind=procurement" in system
    assert "User is viewing contact ID 12" in system
    assert "Answer in Dutch." in system
    assert [m.role for m in sent_history] == ["user"]
    assert "web_search" not in [tool["name"] for tool in tools]
    # Caller history is not modified
    assert len(history) == 2


@pytest.mark.asyncio
async def test_ask_reply_is_annotated(chat_model, mock_executor):
    chat_model.complete.return_value = ModelReply(content="[ASK] Which Acme office?")
    orchestrator = Orchestrator(chat_model, mock_executor)

    reply = await orchestrator.respond(_user("Add a contact at Acme"), CALLER)

    assert reply.kind is MessageKind.ask
    assert reply.content == "Which Acme office?"


@pytest.mark.asyncio
async def test_only_the_first_tool_call_runs(chat_model, mock_executor):
    chat_model.complete.side_effect = [
        _tool_reply(
            ("search_contacts", {"query": "jane"}),
            ("search_contacts", {"query": "john"}),
        ),
        ModelReply(content="No Jane found."),
    ]
    orchestrator = Orchestrator(chat_model, mock_executor)

    reply = await orchestrator.respond(_user("Find Jane and John"), CALLER)

    assert reply.content == "No Jane found."
    mock_executor.execute.assert_awaited_once_with("search_contacts", {"query": "jane"}, CALLER)

    second_history = chat_model.complete.call_args_list[1].args[1]
    assert [m.role for m in second_history] == ["user", "assistant", "tool"]
    assert [c.id for c in second_history[1].tool_calls] == ["toolu_1"]
    assert second_history[2].tool_call_id == "toolu_1"
    assert json.loads(second_history[2].content)["status"] == "ok"


@pytest.mark.asyncio
async def test_tool_loop_stops_after_three_rounds(chat_model, mock_executor):
    chat_model.complete.return_value = _tool_reply(("search_contacts", {"query": "jane"}))
    orchestrator = Orchestrator(chat_model, mock_executor)

    reply = await orchestrator.respond(_user("Find Jane"), CALLER)

    assert reply == Message(role="assistant", content=FALLBACK_REPLY)
    assert chat_model.complete.await_count == 3
    assert mock_executor.execute.await_count == 3


@pytest.mark.asyncio
async def test_round_limit_is_configurable(chat_model, mock_executor):
    chat_model.complete.return_value = _tool_reply(("search_contacts", {"query": "jane"}))
    orchestrator = Orchestrator(chat_model, mock_executor, max_tool_turns=1)

    await orchestrator.respond(_user("Find Jane"), CALLER)

    assert chat_model.complete.await_count == 1


@pytest.mark.asyncio
async def test_incomplete_arguments_never_reach_the_store(chat_model, mock_store):
    chat_model.complete.side_effect = [
        _tool_reply(("create_contact", {"first_name": "Jane"})),
        ModelReply(content="[ASK] To create the contact I still need an email address or phone number."),
    ]
    orchestrator = Orchestrator(chat_model, ActionExecutor(mock_store, chat_model))

    reply = await orchestrator.respond(_user("Add Jane"), CALLER)

    mock_store.insert.assert_not_awaited()
    mock_store.update.assert_not_awaited()
    tool_message = chat_model.complete.call_args_list[1].args[1][-1]
    assert json.loads(tool_message.content) == {
        "status": "needs_info",
        "prompt": "To create the contact I still need an email address or phone number.",
    }
    assert reply.kind is MessageKind.ask
    assert reply.content == "To create the contact I still need an email address or phone number."


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_the_model(chat_model, mock_executor):
    chat_model.complete.side_effect = [
        _tool_reply(("delete_everything", {})),
        ModelReply(content="I can't do that."),
    ]
    orchestrator = Orchestrator(chat_model, mock_executor)

    await orchestrator.respond(_user("Wipe the CRM"), CALLER)

    mock_executor.execute.assert_not_awaited()
    tool_message = chat_model.complete.call_args_list[1].args[1][-1]
    assert json.loads(tool_message.content) == {
        "status": "error",
        "error": "Unknown tool: delete_everything",
    }


@pytest.mark.asyncio
async def test_web_search_refused_without_provider(chat_model, mock_executor):
    chat_model.complete.side_effect = [
        _tool_reply(("web_search", {"query": "logistics firms"})),
        ModelReply(content="Web search is off."),
    ]
    orchestrator = Orchestrator(chat_model, mock_executor)

    await orchestrator.respond(_user("Find logistics firms online"), CALLER)

    mock_executor.execute.assert_not_awaited()
    tool_message = chat_model.complete.call_args_list[1].args[1][-1]
    assert json.loads(tool_message.content)["error"] == "Unknown tool: web_search"


@pytest.mark.asyncio
async def test_model_failure_becomes_an_error_reply(chat_model, mock_executor):
    chat_model.complete.side_effect = RuntimeError("overloaded")
    orchestrator = Orchestrator(chat_model, mock_executor)

    reply = await orchestrator.respond(_user("Hello"), CALLER)

    assert reply.role == "assistant"
    assert "overloaded" in reply.content


@pytest.mark.asyncio
async def test_stage_lookup_failure_still_answers(chat_model, mock_executor):
    mock_executor.stages.stage_vocabulary.side_effect = OperationalError(
        "SELECT deal_stage_sets", {}, Exception("db down")
    )
    chat_model.complete.return_value = ModelReply(content="Hello, how can I help?")
    orchestrator = Orchestrator(chat_model, mock_executor)

    reply = await orchestrator.respond(_user("hi"), CALLER)

    assert reply == Message(role="assistant", content="Hello, how can I help?")
    mock_executor.store.rollback.assert_awaited_once()
    system = chat_model.complete.call_args.args[0]
    assert "- sales: (not configured)" in system
    assert "- partnership: (not configured)" in system


@pytest.mark.asyncio
async def test_partnership_mode_reaches_the_prompt(chat_model, mock_executor):
    chat_model.complete.return_value = ModelReply(content="ok")
    orchestrator = Orchestrator(chat_model, mock_executor)

    await orchestrator.respond(_user("new deal"), CALLER, AssistantContext(mode="partnership"))

    system = chat_model.complete.call_args.args[0]
    assert "use deal_kind=partnership" in system
