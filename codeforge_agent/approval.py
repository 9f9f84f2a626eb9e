"""
Approval Manager
================

Bridges confirm-risk tool calls to whoever decides on them (a UI, a CLI
prompt, a test).

The risk gate calls ApprovalManager.request as its approval callback. The
request suspends until resolve() or dismiss() is called for the approval
id, or until the timeout elapses. Dismissal and timeout both count as a
rejection, so a closed dialog can never hang a turn.

Usage:
    manager = ApprovalManager(timeout_seconds=300, on_request=show_dialog)
    gate = RiskGate(registry, executors, audit_log, approval_callback=manager.request)

    # Later, from the UI:
    manager.resolve(approval_id, approved=True)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from codeforge_agent.models import ApprovalStatus, PendingApproval

logger = logging.getLogger(__name__)


@dataclass
class ApprovalDecision:
    """How a pending approval was settled."""
    approval_id: str
    tool_name: str
    approved: bool
    decided_by: str  # user, dismissed, timeout
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "approval_id": self.approval_id,
            "tool_name": self.tool_name,
            "approved": self.approved,
            "decided_by": self.decided_by,
            "timestamp": self.timestamp,
        }


class ApprovalManager:
    """
    Holds pending approvals until a decision arrives.

    Each pending approval is backed by an asyncio.Future owned by the
    waiting request() call.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        on_request: Optional[Callable[[PendingApproval], None]] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.on_request = on_request

        self._pending: dict[str, PendingApproval] = {}
        self._futures: dict[str, "asyncio.Future[tuple[bool, str]]"] = {}
        self.history: list[ApprovalDecision] = []

        self.stats = {
            "requested": 0,
            "approved": 0,
            "rejected": 0,
            "dismissed": 0,
            "timed_out": 0,
        }

    async def request(self, pending: PendingApproval) -> bool:
        """
        Wait for a decision on a pending approval.

        Returns:
            True only when explicitly approved
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[pending.id] = pending
        self._futures[pending.id] = future
        self.stats["requested"] += 1

        if self.on_request is not None:
            try:
                self.on_request(pending)
            except Exception as e:
                logger.warning("Approval request hook failed: %s", e)

        try:
            if self.timeout_seconds is not None:
                approved, decided_by = await asyncio.wait_for(future, timeout=self.timeout_seconds)
            else:
                approved, decided_by = await future
        except asyncio.TimeoutError:
            approved, decided_by = False, "timeout"
            self.stats["timed_out"] += 1
        finally:
            self._pending.pop(pending.id, None)
            self._futures.pop(pending.id, None)

        pending.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        self.stats["approved" if approved else "rejected"] += 1
        self.history.append(ApprovalDecision(
            approval_id=pending.id,
            tool_name=pending.tool_call.tool_name,
            approved=approved,
            decided_by=decided_by,
            timestamp=datetime.now(timezone.utc).isoformat(),
        ))
        return approved

    def resolve(self, approval_id: str, approved: bool) -> bool:
        """
        Settle a pending approval.

        Returns:
            False if no such approval is waiting
        """
        return self._settle(approval_id, approved, "user")

    def dismiss(self, approval_id: str) -> bool:
        """Close an approval without a decision; counts as rejection."""
        settled = self._settle(approval_id, False, "dismissed")
        if settled:
            self.stats["dismissed"] += 1
        return settled

    def dismiss_all(self) -> int:
        count = 0
        for approval_id in list(self._futures):
            if self.dismiss(approval_id):
                count += 1
        return count

    def _settle(self, approval_id: str, approved: bool, decided_by: str) -> bool:
        future = self._futures.get(approval_id)
        if future is None or future.done():
            return False
        future.set_result((bool(approved), decided_by))
        return True

    def get_pending(self) -> list[PendingApproval]:
        return list(self._pending.values())

    def get_stats(self) -> dict:
        return {**self.stats, "pending": len(self._pending)}
