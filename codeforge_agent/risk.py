"""
Risk Gate
=========

Classifies tool calls by risk level and executes them through the executor
registry, gated accordingly:

- auto: execute immediately
- notify: execute immediately, then send a notification
- confirm: build a PendingApproval and wait for the approval callback

Every call that reaches the gate ends as a ToolCallResult. Executor errors,
timeouts and user rejections become failed results here and never abort
the caller's turn.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Optional

from codeforge_agent.audit import APPROVED_BY_AUTO, APPROVED_BY_USER, AuditLog
from codeforge_agent.config import TOOL_EXECUTION_TIMEOUT
from codeforge_agent.errors import ToolExecutionError
from codeforge_agent.models import (
    REJECTED_BY_USER,
    ApprovalStatus,
    PendingApproval,
    RiskLevel,
    ToolCall,
    ToolCallResult,
    ToolCallStatus,
    ToolDefinition,
)
from codeforge_agent.tools.registry import ExecutorRegistry, ToolRegistry

logger = logging.getLogger(__name__)


ApprovalCallback = Callable[[PendingApproval], Awaitable[bool]]
NotifyCallback = Callable[[str, str], None]


# =============================================================================
# Classification
# =============================================================================

# Project files whose modification always needs confirmation
SENSITIVE_FILES = {
    "package.json",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "tsconfig.json",
    ".gitignore",
    "next.config.js",
    "next.config.mjs",
    "next.config.ts",
    "vercel.json",
    "tailwind.config.ts",
    "tailwind.config.js",
    "postcss.config.js",
    "postcss.config.mjs",
}

# Tool-name fragments that mark an operation as destructive
DESTRUCTIVE_PATTERNS = ("delete", "remove", "drop", "truncate", "reset", "force", "push")

# Argument keys scanned for affected files
FILE_ARG_KEYS = ("path", "filePath", "fileId", "nodeId", "paths")


def is_sensitive_file(file_path: str) -> bool:
    name = PurePosixPath(file_path.replace("\\", "/")).name
    return name in SENSITIVE_FILES or name == ".env" or name.startswith(".env.")


def extract_affected_files(args: dict) -> list[str]:
    """Best-effort list of files a call touches, for display only."""
    files: list[str] = []
    for key in FILE_ARG_KEYS:
        value = args.get(key)
        if isinstance(value, str) and value:
            files.append(value)
        elif isinstance(value, (list, tuple)):
            files.extend(v for v in value if isinstance(v, str) and v)
    # Multi-file pushes carry their paths inside the entries
    for entry in args.get("files") or []:
        if isinstance(entry, dict) and isinstance(entry.get("path"), str):
            files.append(entry["path"])
    return list(dict.fromkeys(files))


@dataclass
class RiskAssessment:
    """Effective risk of one tool call."""
    tool: str
    declared_level: RiskLevel
    level: RiskLevel
    affected_files: list[str] = field(default_factory=list)
    concerns: list[str] = field(default_factory=list)

    @property
    def escalated(self) -> bool:
        return self.level != self.declared_level

    def to_dict(self) -> dict:
        return {
            "tool": self.tool,
            "declared_level": self.declared_level.value,
            "level": self.level.value,
            "affected_files": self.affected_files,
            "concerns": self.concerns,
        }


def classify(tool: ToolDefinition, args: dict) -> RiskAssessment:
    """
    Compute the effective risk level of a call.

    The result is never lower than the tool's declared level. Writes that
    touch sensitive project files escalate to confirm; destructive tool
    names escalate auto to notify.
    """
    affected = extract_affected_files(args)
    name_arg = args.get("name")
    candidates = affected + ([name_arg] if isinstance(name_arg, str) else [])

    level = tool.risk_level
    concerns: list[str] = []

    sensitive = [f for f in candidates if is_sensitive_file(f)]
    if sensitive and tool.risk_level != RiskLevel.AUTO:
        level = RiskLevel.highest(level, RiskLevel.CONFIRM)
        concerns.append(f"Touches sensitive files: {', '.join(sensitive)}")

    lowered = tool.name.lower()
    if any(pattern in lowered for pattern in DESTRUCTIVE_PATTERNS):
        level = RiskLevel.highest(level, RiskLevel.NOTIFY)
        concerns.append("Destructive operation")

    return RiskAssessment(
        tool=tool.name,
        declared_level=tool.risk_level,
        level=level,
        affected_files=affected,
        concerns=concerns,
    )


def describe_tool_call(tool: ToolDefinition, args: dict) -> str:
    """Human-readable description shown in approval prompts."""
    if tool.name == "delete_file":
        return f"Delete: {args.get('nodeId') or 'unspecified file'}"
    if tool.name == "git_push":
        branch = args.get("branch")
        return f"Push changes to remote{f' (branch: {branch})' if branch else ''}"
    if tool.name in ("git_create_pr", "github_create_pull_request"):
        return f"Create Pull Request: {args.get('title') or ''}".rstrip()
    rendered = json.dumps(args, ensure_ascii=False, default=str)
    return f"{tool.description}\n{rendered}"


def describe_notification(tool: ToolDefinition, args: dict, result: ToolCallResult) -> str:
    target = ", ".join(extract_affected_files(args)) or args.get("name") or ""
    suffix = f" {target}" if target else ""
    if result.success:
        return f"{tool.name}{suffix}"
    return f"{tool.name}{suffix} failed: {result.error}"


def coerce_result(raw: Any) -> ToolCallResult:
    """Turn whatever an executor returned into a ToolCallResult."""
    if isinstance(raw, ToolCallResult):
        return raw
    if isinstance(raw, dict) and "success" in raw:
        data = raw.get("data")
        if data is None:
            rest = {k: v for k, v in raw.items() if k not in ("success", "error")}
            data = rest or None
        return ToolCallResult(success=bool(raw["success"]), data=data, error=raw.get("error"))
    return ToolCallResult.ok(raw)


# =============================================================================
# Risk Gate
# =============================================================================

class RiskGate:
    """
    Executes tool calls according to their risk level.

    Confirm-level calls are never executed without the approval callback
    returning True. With no callback configured they are rejected.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        executors: ExecutorRegistry,
        audit_log: AuditLog,
        approval_callback: Optional[ApprovalCallback] = None,
        notify: Optional[NotifyCallback] = None,
        tool_timeout: Optional[float] = TOOL_EXECUTION_TIMEOUT,
    ):
        self.registry = registry
        self.executors = executors
        self.audit_log = audit_log
        self.approval_callback = approval_callback
        self.notify = notify
        self.tool_timeout = tool_timeout

        self._pending: dict[str, PendingApproval] = {}

        self.stats = {
            "executed": 0,
            "failed": 0,
            "approved": 0,
            "rejected": 0,
            "by_level": {level.value: 0 for level in RiskLevel},
        }

    def get_pending(self) -> list[PendingApproval]:
        return list(self._pending.values())

    def assess(self, call: ToolCall) -> Optional[RiskAssessment]:
        tool = self.registry.get_by_name(call.tool_name)
        if tool is None:
            return None
        return classify(tool, call.args)

    async def execute(self, call: ToolCall) -> ToolCallResult:
        """
        Gate and run one tool call.

        Updates call.status and call.result in place and returns the result.
        """
        tool = self.registry.get_by_name(call.tool_name)
        if tool is None:
            return self._finish(call, ToolCallResult.fail(f"Unknown tool: {call.tool_name}"))

        if call.parse_error:
            return self._finish(call, ToolCallResult.fail(call.parse_error))

        assessment = classify(tool, call.args)
        level = assessment.level
        self.stats["by_level"][level.value] += 1
        if assessment.escalated:
            logger.info(
                "Escalated %s from %s to %s (%s)",
                tool.name, tool.risk_level.value, level.value, "; ".join(assessment.concerns),
            )

        if level == RiskLevel.CONFIRM:
            return await self._execute_confirmed(tool, call, assessment)

        result, duration_ms = await self._run(tool, call)
        await self.audit_log.log(
            tool.name, call.args, result, APPROVED_BY_AUTO,
            risk_level=level, category=tool.category.value, duration_ms=duration_ms,
        )
        if level == RiskLevel.NOTIFY:
            self._send_notification(
                describe_notification(tool, call.args, result),
                "success" if result.success else "error",
            )
        return result

    async def _execute_confirmed(
        self,
        tool: ToolDefinition,
        call: ToolCall,
        assessment: RiskAssessment,
    ) -> ToolCallResult:
        pending = PendingApproval(
            tool_call=call,
            description=describe_tool_call(tool, call.args),
            risk_level=assessment.level,
            affected_files=assessment.affected_files,
        )
        approved = await self._request_approval(pending)

        if not approved:
            self.stats["rejected"] += 1
            call.status = ToolCallStatus.REJECTED
            result = ToolCallResult.fail(REJECTED_BY_USER)
            call.result = result
            await self.audit_log.log(
                tool.name, call.args, result, APPROVED_BY_USER,
                risk_level=assessment.level, category=tool.category.value,
            )
            return result

        self.stats["approved"] += 1
        call.status = ToolCallStatus.APPROVED
        result, duration_ms = await self._run(tool, call)
        await self.audit_log.log(
            tool.name, call.args, result, APPROVED_BY_USER,
            risk_level=assessment.level, category=tool.category.value, duration_ms=duration_ms,
        )
        return result

    async def _request_approval(self, pending: PendingApproval) -> bool:
        """Wait for a decision. Anything but an explicit True is a rejection."""
        if self.approval_callback is None:
            logger.warning("No approval callback configured; rejecting %s", pending.tool_call.tool_name)
            pending.status = ApprovalStatus.REJECTED
            return False

        self._pending[pending.id] = pending
        try:
            decision = await self.approval_callback(pending)
        except Exception as e:
            logger.warning("Approval callback failed for %s: %s", pending.tool_call.tool_name, e)
            decision = False
        finally:
            self._pending.pop(pending.id, None)

        approved = decision is True
        pending.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        return approved

    async def _run(self, tool: ToolDefinition, call: ToolCall) -> tuple[ToolCallResult, int]:
        start = time.monotonic()
        executor = self.executors.get(tool.name)
        if executor is None:
            result = ToolCallResult.fail(f"No executor registered for: {tool.name}")
            return self._finish(call, result), 0

        call.status = ToolCallStatus.EXECUTING
        try:
            if self.tool_timeout:
                raw = await asyncio.wait_for(executor(dict(call.args)), timeout=self.tool_timeout)
            else:
                raw = await executor(dict(call.args))
            result = coerce_result(raw)
        except asyncio.TimeoutError:
            result = ToolCallResult.fail(f"Tool {tool.name} timed out after {self.tool_timeout:g}s")
        except Exception as e:
            error = ToolExecutionError(tool.name, str(e) or type(e).__name__)
            logger.warning("Tool %s raised: %s", tool.name, error)
            result = ToolCallResult.fail(str(error))

        duration_ms = int((time.monotonic() - start) * 1000)
        return self._finish(call, result), duration_ms

    def _finish(self, call: ToolCall, result: ToolCallResult) -> ToolCallResult:
        call.result = result
        call.status = ToolCallStatus.COMPLETED if result.success else ToolCallStatus.FAILED
        if result.success:
            self.stats["executed"] += 1
        else:
            self.stats["failed"] += 1
        return result

    def _send_notification(self, message: str, level: str) -> None:
        """Fire-and-forget: notification failures never affect the call."""
        if self.notify is None:
            return
        try:
            self.notify(message, level)
        except Exception as e:
            logger.debug("Notification callback failed: %s", e)

    def get_stats(self) -> dict:
        return {**self.stats, "by_level": dict(self.stats["by_level"])}
