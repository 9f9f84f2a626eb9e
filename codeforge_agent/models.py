"""
Agent Data Model
================

Core records shared by the registry, providers, risk gate and orchestrator:
tool definitions, tool calls and their results, transcript messages and
pending approvals.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str = "") -> str:
    """Generate a short unique id with an optional prefix."""
    token = uuid.uuid4().hex[:12]
    return f"{prefix}_{token}" if prefix else token


# =============================================================================
# Enumerations
# =============================================================================

class RiskLevel(str, Enum):
    """How a tool call is gated before execution."""
    AUTO = "auto"        # Execute immediately
    NOTIFY = "notify"    # Execute, then tell the user
    CONFIRM = "confirm"  # Wait for explicit approval

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def highest(cls, *levels: "RiskLevel") -> "RiskLevel":
        return max(levels, key=lambda level: level.rank)


_RISK_RANK = {RiskLevel.AUTO: 0, RiskLevel.NOTIFY: 1, RiskLevel.CONFIRM: 2}


class ToolCategory(str, Enum):
    FILESYSTEM = "filesystem"
    GIT = "git"
    GITHUB = "github"
    UTILITY = "utility"
    SELF_IMPROVE = "self_improve"


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# =============================================================================
# Tools
# =============================================================================

@dataclass(frozen=True)
class ToolDefinition:
    """
    A tool the model may call.

    Instances are immutable: the parameter schema is exposed through a
    read-only mapping so a registered definition can never be altered.
    """
    name: str
    description: str
    parameters: Mapping[str, Any]
    risk_level: RiskLevel
    category: ToolCategory

    def __post_init__(self):
        if not isinstance(self.parameters, MappingProxyType):
            object.__setattr__(self, "parameters", _freeze(self.parameters))

    def schema(self) -> dict:
        """Return a mutable copy of the JSON parameter schema."""
        return _thaw(self.parameters)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.schema(),
            "risk_level": self.risk_level.value,
            "category": self.category.value,
        }


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass
class ToolCallResult:
    """Outcome of one tool call as fed back to the model."""
    success: bool
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result: dict = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCallResult":
        return cls(
            success=bool(data.get("success")),
            data=data.get("data"),
            error=data.get("error"),
        )

    @classmethod
    def ok(cls, data: Any = None) -> "ToolCallResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolCallResult":
        return cls(success=False, error=error)


REJECTED_BY_USER = "rejected by user"


@dataclass
class ToolCall:
    """A structured function invocation emitted by the model."""
    id: str
    tool_name: str
    args: dict = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Optional[ToolCallResult] = None
    created_at: str = field(default_factory=_now)
    # Set when the provider sent arguments that could not be decoded
    parse_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "args": self.args,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "created_at": self.created_at,
            "parse_error": self.parse_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCall":
        result = data.get("result")
        return cls(
            id=data["id"],
            tool_name=data["tool_name"],
            args=data.get("args") or {},
            status=ToolCallStatus(data.get("status", "pending")),
            result=ToolCallResult.from_dict(result) if result else None,
            created_at=data.get("created_at", _now()),
            parse_error=data.get("parse_error"),
        )


# =============================================================================
# Transcript
# =============================================================================

@dataclass
class AgentMessage:
    """One entry of the conversation transcript."""
    role: MessageRole
    content: str
    tool_calls: Optional[list[ToolCall]] = None
    id: str = field(default_factory=lambda: new_id("msg"))
    created_at: str = field(default_factory=_now)

    @classmethod
    def user(cls, content: str) -> "AgentMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[list[ToolCall]] = None) -> "AgentMessage":
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool(cls, call: ToolCall) -> "AgentMessage":
        """Build the tool-result message for a finished call."""
        result = call.result or ToolCallResult.fail("no result")
        return cls(role=MessageRole.TOOL, content=result.to_json(), tool_calls=[call])

    @property
    def tool_call_id(self) -> Optional[str]:
        if self.role == MessageRole.TOOL and self.tool_calls:
            return self.tool_calls[0].id
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls] if self.tool_calls else None,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentMessage":
        calls = data.get("tool_calls")
        return cls(
            id=data.get("id") or new_id("msg"),
            role=MessageRole(data["role"]),
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_dict(tc) for tc in calls] if calls else None,
            created_at=data.get("created_at", _now()),
        )


# =============================================================================
# Approvals
# =============================================================================

@dataclass
class PendingApproval:
    """A confirm-risk tool call waiting for a human decision."""
    tool_call: ToolCall
    description: str
    risk_level: RiskLevel
    affected_files: list[str] = field(default_factory=list)
    status: ApprovalStatus = ApprovalStatus.PENDING
    id: str = field(default_factory=lambda: new_id("approval"))
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tool_call": self.tool_call.to_dict(),
            "description": self.description,
            "risk_level": self.risk_level.value,
            "affected_files": self.affected_files,
            "status": self.status.value,
            "created_at": self.created_at,
        }
