from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from crm_assistant.integrations.claude_chat import ClaudeChatClient, to_provider_messages
from crm_assistant.schemas.assistant import Message, MessageKind, ToolCall


@pytest.fixture(autouse=True)
async def setup_db():
    """Override the global setup_db fixture: these tests don't need a database."""
    yield


def _block(type_: str, **attrs) -> MagicMock:
    block = MagicMock()
    block.type = type_
    for name, value in attrs.items():
        setattr(block, name, value)
    return block


def _mock_response(*blocks: MagicMock, stop_reason: str = "end_turn") -> MagicMock:
    usage = MagicMock()
    usage.input_tokens = 300
    usage.output_tokens = 40

    response = MagicMock()
    response.content = list(blocks)
    response.usage = usage
    response.stop_reason = stop_reason
    return response


def test_history_conversion():
    history = [
        Message(role="system", content="Be brief."),
        Message(role="user", content="Add Jane at Acme"),
        Message(role="assistant", content="Create Jane at Acme?", kind=MessageKind.confirm),
        Message(role="user", content="yes"),
        Message(
            role="assistant",
            content="",
            tool_calls=[
                ToolCall(
                    id="toolu_1",
                    name="create_contact",
                    arguments='{"first_name": "Jane", "company_name": "Acme"}',
                )
            ],
        ),
        Message(role="tool", content='{"status": "ok"}', tool_call_id="toolu_1"),
    ]

    assert to_provider_messages(history) == [
        {"role": "user", "content": "Add Jane at Acme"},
        {"role": "assistant", "content": "[CONFIRM] Create Jane at Acme?"},
        {"role": "user", "content": "yes"},
        {
            "role": "assistant",
            "content": [
                {
                    "type": "tool_use",
                    "id": "toolu_1",
                    "name": "create_contact",
                    "input": {"first_name": "Jane", "company_name": "Acme"},
                }
            ],
        },
        {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": '{"status": "ok"}'}
            ],
        },
    ]


def test_unreadable_tool_arguments_become_empty_input():
    history = [
        Message(
            role="assistant",
            content="Looking that up.",
            tool_calls=[ToolCall(id="toolu_9", name="search_contacts", arguments="{oops")],
        )
    ]
    content = to_provider_messages(history)[0]["content"]
    assert content[0] == {"type": "text", "text": "Looking that up."}
    assert content[1]["input"] == {}


@pytest.mark.asyncio
async def test_complete_returns_text_and_tool_calls():
    client = ClaudeChatClient(api_key="test-key", model="claude-sonnet-4-20250514")
    response = _mock_response(
        _block("text", text="Let me check."),
        _block("tool_use", id="toolu_1", name="search_contacts", input={"query": "jane"}),
        _block("tool_use", id="toolu_2", name="search_notes", input={"query": "jane"}),
        stop_reason="tool_use",
    )
    tools = [{"name": "search_contacts", "description": "d", "input_schema": {}}]

    with patch.object(
        client._client.messages, "create", new_callable=AsyncMock, return_value=response
    ) as mock_create:
        reply = await client.complete("system", [Message(role="user", content="jane?")], tools)

    assert reply.content == "Let me check."
    assert [c.name for c in reply.tool_calls] == ["search_contacts", "search_notes"]
    assert reply.tool_calls[0].arguments == {"query": "jane"}
    assert reply.tokens_input == 300

    kwargs = mock_create.call_args.kwargs
    assert kwargs["system"] == "system"
    assert kwargs["tools"] == tools
    assert kwargs["tool_choice"] == {"type": "auto"}
    assert kwargs["messages"] == [{"role": "user", "content": "jane?"}]


@pytest.mark.asyncio
async def test_complete_text_sends_no_tools():
    client = ClaudeChatClient(api_key="test-key")

    with patch.object(
        client._client.messages,
        "create",
        new_callable=AsyncMock,
        return_value=_mock_response(_block("text", text="  Hi Jane,\n\nThanks for your time.  ")),
    ) as mock_create:
        body = await client.complete_text("Write emails.", "Follow up with Jane")

    assert body == "Hi Jane,\n\nThanks for your time."
    assert "tools" not in mock_create.call_args.kwargs


@pytest.mark.asyncio
async def test_complete_propagates_provider_errors():
    client = ClaudeChatClient(api_key="test-key")

    with patch.object(
        client._client.messages,
        "create",
        new_callable=AsyncMock,
        side_effect=RuntimeError("API down"),
    ):
        with pytest.raises(RuntimeError, match="API down"):
            await client.complete("system", [Message(role="user", content="hi")])
