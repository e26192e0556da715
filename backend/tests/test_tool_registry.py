from unittest.mock import MagicMock

import pytest

from crm_assistant.integrations.tavily import TavilySearchClient
from crm_assistant.services.executor import ActionExecutor
from crm_assistant.services.orchestrator import Orchestrator
from crm_assistant.services.tool_registry import (
    ALL_TOOLS,
    Capabilities,
    ToolName,
    catalogue,
    list_tools,
    to_provider_tools,
)


@pytest.fixture(autouse=True)
async def setup_db():
    """Override the global setup_db fixture: these tests don't need a database."""
    yield


def test_web_search_hidden_without_capability():
    names = [tool.name for tool in list_tools(Capabilities())]
    assert ToolName.web_search not in names
    assert len(names) == 8


def test_web_search_listed_with_capability():
    names = [tool.name for tool in list_tools(Capabilities(web_search=True))]
    assert names[-1] == ToolName.web_search
    assert set(names) == set(ToolName)


def test_catalogue_flags_disabled_tools():
    tools = {tool.name: tool for tool in catalogue(Capabilities())}
    assert tools[ToolName.web_search].enabled is False
    assert ALL_TOOLS[ToolName.web_search].enabled is True


def test_order_is_stable():
    first = [t.name for t in list_tools(Capabilities(web_search=True))]
    second = [t.name for t in list_tools(Capabilities(web_search=True))]
    assert first == second


def test_provider_tool_format():
    provider_tools = to_provider_tools(list_tools(Capabilities()))
    search = provider_tools[0]
    assert search["name"] == "search_contacts"
    assert search["input_schema"]["required"] == ["query"]
    assert set(search) == {"name", "description", "input_schema"}


def test_every_tool_has_a_handler():
    executor = ActionExecutor(MagicMock(), MagicMock())
    assert set(executor.handlers) == set(ToolName)


def test_orchestrator_offers_what_executor_can_run():
    without_search = Orchestrator(MagicMock(), ActionExecutor(MagicMock(), MagicMock()))
    assert ToolName.web_search not in [t.name for t in without_search.tools]

    with_search = Orchestrator(
        MagicMock(),
        ActionExecutor(MagicMock(), MagicMock(), TavilySearchClient("test-key")),
    )
    assert ToolName.web_search in [t.name for t in with_search.tools]
