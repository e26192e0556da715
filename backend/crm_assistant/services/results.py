import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Success:
    payload: dict[str, Any] = field(default_factory=dict)

    def to_content(self) -> str:
        return _dump({"status": "ok", "data": self.payload})


@dataclass
class NeedsInfo:
    """The user has to supply more information before the tool can run."""

    prompt: str

    def to_content(self) -> str:
        return _dump({"status": "needs_info", "prompt": self.prompt})


@dataclass
class ToolError:
    reason: str

    def to_content(self) -> str:
        return _dump({"status": "error", "error": self.reason})


ToolResult = Success | NeedsInfo | ToolError


def _dump(data: dict) -> str:
    return json.dumps(data, default=str, ensure_ascii=False)
