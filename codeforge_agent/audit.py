"""
Audit Log
=========

Append-only record of every tool call the agent executed or was refused.

Entries are immutable once written. The log keeps the most recent entries
in memory for filtering and statistics, and writes every entry through to
the .codeforge/project.db database when a session is attached.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codeforge_agent.config import MAX_AUDIT_ENTRIES
from codeforge_agent.db.models import AuditEntryModel
from codeforge_agent.models import REJECTED_BY_USER, RiskLevel, ToolCallResult, ToolCategory, new_id

logger = logging.getLogger(__name__)


APPROVED_BY_AUTO = "auto"
APPROVED_BY_USER = "user"

# Tool-name prefixes used when the registry cannot tell us the category
_CATEGORY_PREFIXES = (
    ("github_", ToolCategory.GITHUB),
    ("git_", ToolCategory.GIT),
    ("self_", ToolCategory.SELF_IMPROVE),
)
_FILESYSTEM_TOOLS = {
    "list_files", "read_file", "search_files", "create_file", "update_file",
    "create_folder", "delete_file", "rename_file", "move_file",
}


def infer_category(tool_name: str) -> str:
    """Guess a tool's category from its name."""
    for prefix, category in _CATEGORY_PREFIXES:
        if tool_name.startswith(prefix):
            return category.value
    if tool_name in _FILESYSTEM_TOOLS or tool_name.endswith(("_file", "_files", "_folder")):
        return ToolCategory.FILESYSTEM.value
    return ToolCategory.UTILITY.value


@dataclass(frozen=True)
class AuditLogEntry:
    """A single audited tool call."""
    tool_name: str
    args: dict
    result: dict
    approved_by: str
    success: bool
    risk_level: str = RiskLevel.AUTO.value
    category: str = ToolCategory.UTILITY.value
    session_id: Optional[str] = None
    duration_ms: Optional[int] = None
    id: str = field(default_factory=lambda: new_id("audit"))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def rejected(self) -> bool:
        return self.approved_by == APPROVED_BY_USER and not self.success and (
            self.result.get("error") == REJECTED_BY_USER
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "tool_name": self.tool_name,
            "category": self.category,
            "risk_level": self.risk_level,
            "args": self.args,
            "result": self.result,
            "approved_by": self.approved_by,
            "success": self.success,
            "session_id": self.session_id,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditLogEntry":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            tool_name=data["tool_name"],
            category=data.get("category") or infer_category(data["tool_name"]),
            risk_level=data.get("risk_level", RiskLevel.AUTO.value),
            args=data.get("args") or {},
            result=data.get("result") or {},
            approved_by=data.get("approved_by", APPROVED_BY_AUTO),
            success=bool(data.get("success")),
            session_id=data.get("session_id"),
            duration_ms=data.get("duration_ms"),
        )


class AuditLog:
    """
    Append-only audit trail of tool executions.

    Provides:
    - Appending entries (never updated afterwards)
    - Filtering by tool, category, risk level, outcome, approver, time and text
    - Aggregate statistics for display

    Storage: entries are persisted in the .codeforge/project.db database when
    a session is attached; the newest max_entries stay in memory.
    """

    def __init__(
        self,
        project_dir: Optional[Path] = None,
        session_id: Optional[str] = None,
        max_entries: int = MAX_AUDIT_ENTRIES,
    ):
        self.project_dir = Path(project_dir) if project_dir else None
        self.session_id = session_id
        self.max_entries = max_entries

        self._db_session: Optional[AsyncSession] = None
        self._entries: list[AuditLogEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def set_session(self, session: AsyncSession) -> None:
        """Set the database session for write-through."""
        self._db_session = session

    async def init_async(self, session: AsyncSession) -> None:
        """Attach a database session and load the most recent entries."""
        self._db_session = session
        await self._load_entries_async()

    # =========================================================================
    # Async Database Methods
    # =========================================================================

    async def _load_entries_async(self) -> None:
        if self._db_session is None:
            return

        result = await self._db_session.execute(
            select(AuditEntryModel)
            .order_by(AuditEntryModel.id.desc())
            .limit(self.max_entries)
        )
        rows = list(reversed(result.scalars().all()))
        self._entries = [self._row_to_entry(row) for row in rows]

    async def _save_entry_async(self, entry: AuditLogEntry) -> None:
        if self._db_session is None:
            return

        self._db_session.add(AuditEntryModel(
            entry_id=entry.id,
            timestamp=entry.timestamp,
            session_id=entry.session_id,
            tool_name=entry.tool_name,
            category=entry.category,
            risk_level=entry.risk_level,
            args=entry.args,
            result=entry.result,
            approved_by=entry.approved_by,
            success=entry.success,
            duration_ms=entry.duration_ms,
        ))
        await self._db_session.commit()

    def _row_to_entry(self, row: AuditEntryModel) -> AuditLogEntry:
        return AuditLogEntry(
            id=row.entry_id,
            timestamp=row.timestamp,
            session_id=row.session_id,
            tool_name=row.tool_name,
            category=row.category,
            risk_level=row.risk_level,
            args=row.args or {},
            result=row.result or {},
            approved_by=row.approved_by,
            success=row.success,
            duration_ms=row.duration_ms,
        )

    # =========================================================================
    # Recording
    # =========================================================================

    async def log(
        self,
        tool_name: str,
        args: dict,
        result: ToolCallResult,
        approved_by: str,
        risk_level: RiskLevel = RiskLevel.AUTO,
        category: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> AuditLogEntry:
        """
        Append an entry for a finished tool call.

        Args:
            tool_name: Name of the tool
            args: Arguments the tool was called with
            result: Outcome of the call
            approved_by: "auto" or "user"
            risk_level: Effective risk level the call was gated at
            category: Tool category (inferred from the name when omitted)
            duration_ms: Execution time

        Returns:
            The recorded entry
        """
        entry = AuditLogEntry(
            tool_name=tool_name,
            args=json.loads(json.dumps(args, ensure_ascii=False, default=str)),
            result=json.loads(result.to_json()),
            approved_by=approved_by,
            success=result.success,
            risk_level=RiskLevel(risk_level).value,
            category=category or infer_category(tool_name),
            session_id=self.session_id,
            duration_ms=duration_ms,
        )
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            del self._entries[: len(self._entries) - self.max_entries]

        await self._save_entry_async(entry)
        logger.debug(
            "audit %s approved_by=%s success=%s", tool_name, approved_by, result.success
        )
        return entry

    # =========================================================================
    # Queries
    # =========================================================================

    def get_all(self) -> list[AuditLogEntry]:
        return list(self._entries)

    def get_recent(self, limit: int = 20) -> list[AuditLogEntry]:
        return self._entries[-limit:][::-1]

    def filter(
        self,
        tool_name: Optional[str] = None,
        category: Optional[str] = None,
        risk_level: Optional[str] = None,
        success: Optional[bool] = None,
        approved_by: Optional[str] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
        query: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> list[AuditLogEntry]:
        """
        Return entries matching every given criterion, oldest first.

        since/until are ISO timestamps compared lexically, which is exact for
        the UTC timestamps this log writes.
        """
        needle = query.lower() if query else None
        matches = []
        for entry in self._entries:
            if tool_name and entry.tool_name != tool_name:
                continue
            if category and entry.category != _value(category):
                continue
            if risk_level and entry.risk_level != _value(risk_level):
                continue
            if success is not None and entry.success != success:
                continue
            if approved_by and entry.approved_by != approved_by:
                continue
            if since and entry.timestamp < since:
                continue
            if until and entry.timestamp > until:
                continue
            if session_id and entry.session_id != session_id:
                continue
            if needle and needle not in _searchable_text(entry):
                continue
            matches.append(entry)
        return matches

    def get_stats(self) -> dict:
        """Aggregate counts over the in-memory entries."""
        stats: dict[str, Any] = {
            "total": len(self._entries),
            "success": 0,
            "failure": 0,
            "rejected": 0,
            "by_tool": {},
            "by_category": {},
            "by_risk_level": {},
        }
        for entry in self._entries:
            if entry.success:
                stats["success"] += 1
            else:
                stats["failure"] += 1
            if entry.rejected:
                stats["rejected"] += 1
            stats["by_tool"][entry.tool_name] = stats["by_tool"].get(entry.tool_name, 0) + 1
            stats["by_category"][entry.category] = stats["by_category"].get(entry.category, 0) + 1
            stats["by_risk_level"][entry.risk_level] = stats["by_risk_level"].get(entry.risk_level, 0) + 1
        return stats

    def export_json(self) -> str:
        return json.dumps(
            [entry.to_dict() for entry in self._entries],
            indent=2,
            ensure_ascii=False,
            default=str,
        )

    def clear(self) -> None:
        """Drop the in-memory view. Persisted rows are kept."""
        self._entries = []

    def format_entry(self, entry: AuditLogEntry) -> str:
        status = "OK" if entry.success else ("REJECTED" if entry.rejected else "FAILED")
        line = (
            f"[{entry.timestamp[:19]}] {entry.tool_name} ({entry.category}, {entry.risk_level}) "
            f"{status} by {entry.approved_by}"
        )
        if not entry.success and entry.result.get("error"):
            line += f": {entry.result['error']}"
        return line


def _value(item: Any) -> str:
    return item.value if hasattr(item, "value") else str(item)


def _searchable_text(entry: AuditLogEntry) -> str:
    return " ".join([
        entry.tool_name,
        json.dumps(entry.args, ensure_ascii=False, default=str),
        str(entry.result.get("error") or ""),
    ]).lower()


def create_audit_log(project_dir: Optional[Path] = None, session_id: Optional[str] = None) -> AuditLog:
    """Create an AuditLog instance."""
    return AuditLog(project_dir, session_id=session_id)


async def create_audit_log_async(
    project_dir: Path,
    session: AsyncSession,
    session_id: Optional[str] = None,
) -> AuditLog:
    """Create an AuditLog that writes through to the database."""
    audit_log = AuditLog(project_dir, session_id=session_id)
    await audit_log.init_async(session)
    return audit_log
