#!/usr/bin/env python
"""
CodeForge Agent Chat
====================

Interactive terminal chat with the tool-calling agent over a local project.

Confirm-level tool calls are shown with their description and affected
files and run only after an explicit yes. Self-improvement requests are
routed to the OODA engine when its credentials are configured.

Example Usage:
    python -m codeforge_agent --project-dir ./my_app
    python -m codeforge_agent --project-dir ./my_app --provider anthropic
    python -m codeforge_agent --project-dir ./my_app --audit
"""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession

from codeforge_agent.approval import ApprovalManager
from codeforge_agent.audit import AuditLog, create_audit_log_async
from codeforge_agent.config import PROVIDERS, AgentConfig, OODAConfig
from codeforge_agent.db.connection import close_db, init_db
from codeforge_agent.errors import AgentError, ProviderError
from codeforge_agent.executors.local import register_local_executors
from codeforge_agent.learning import create_learning_memory_async
from codeforge_agent.models import AgentMessage, PendingApproval, ToolCall
from codeforge_agent.ooda import OODAEvent, ProposedFix, create_ooda_engine, format_fix_diff
from codeforge_agent.orchestrator import AgentOrchestrator
from codeforge_agent.output import (
    confirm,
    console,
    create_table,
    print_error,
    print_diff,
    print_header,
    print_info,
    print_json_data,
    print_markdown,
    print_muted,
    print_notification,
    print_phase,
    print_success,
    print_warning,
    prompt,
    setup_rich_logging,
)
from codeforge_agent.prompts import ProjectContext
from codeforge_agent.providers.client import ProviderClient
from codeforge_agent.risk import RiskGate
from codeforge_agent.tools.registry import ExecutorRegistry, create_default_registry

load_dotenv()

EXIT_COMMANDS = {"exit", "quit", ":q"}


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="CodeForge Agent - tool-calling chat over a local project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  CODEFORGE_PROVIDER         openai, google, groq or anthropic
  CODEFORGE_MODEL            Model override
  OPENAI_API_KEY, GOOGLE_API_KEY, GROQ_API_KEY, ANTHROPIC_API_KEY
  CODEFORGE_OODA_PROVIDER    Provider for self-improvement cycles
        """,
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Project directory the agent works in (default: current directory)",
    )
    parser.add_argument(
        "--provider",
        choices=PROVIDERS,
        default=None,
        help="LLM provider (default: from environment or config file)",
    )
    parser.add_argument("--model", type=str, default=None, help="Model name override")
    parser.add_argument(
        "--audit",
        action="store_true",
        help="Print the audit log summary for the project and exit",
    )
    parser.add_argument(
        "--approval-timeout",
        type=float,
        default=None,
        help="Seconds to wait for an approval answer before rejecting (default: no limit)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="With --audit, print every entry as JSON instead of a table",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args()


# =============================================================================
# Callbacks
# =============================================================================

async def ask_approval(pending: PendingApproval) -> bool:
    """Show a confirm-level call and wait for the user's answer."""
    console.print()
    print_warning(f"Approval required ({pending.risk_level.value})")
    console.print(pending.description)
    if pending.affected_files:
        print_muted(f"Files: {', '.join(pending.affected_files)}")
    return await asyncio.to_thread(confirm, "Allow this action?", default=False)


class TerminalApprovals:
    """
    Approval manager whose pending requests are answered at the terminal.

    A blocking terminal prompt cannot be cancelled. When the approval times
    out the prompt stays on screen, and its late answer is ignored. Call
    drain() before reading other input so two reads never compete for stdin.
    """

    def __init__(self, timeout_seconds: Optional[float] = None, ask=ask_approval):
        self.manager = ApprovalManager(timeout_seconds=timeout_seconds)
        self.manager.on_request = self._on_request
        self._ask = ask
        self._prompts: set[asyncio.Task] = set()

    @property
    def request(self):
        return self.manager.request

    @property
    def open_prompts(self) -> int:
        return len(self._prompts)

    def _on_request(self, pending: PendingApproval) -> None:
        task = asyncio.ensure_future(self._ask(pending))
        self._prompts.add(task)
        task.add_done_callback(lambda t: self._settle(pending, t))

    def _settle(self, pending: PendingApproval, task: asyncio.Task) -> None:
        self._prompts.discard(task)
        if task.cancelled() or task.exception() is not None:
            self.manager.dismiss(pending.id)
        elif not self.manager.resolve(pending.id, task.result()):
            print_muted("That approval had already timed out; the answer was ignored.")

    async def drain(self) -> None:
        """Wait until no approval prompt is reading from the terminal."""
        if self._prompts:
            print_warning("An earlier approval prompt timed out and is still waiting; answer it to continue.")
            await asyncio.gather(*self._prompts, return_exceptions=True)


def show_tool_call(call: ToolCall) -> None:
    print_muted(f"-> {call.tool_name}")


def show_ooda_event(event: OODAEvent) -> None:
    if event.type in ("phase_start", "fix_proposed", "fix_applied", "error"):
        print_phase(event.phase, event.message)
    elif event.type == "verification_result" and event.data and event.data.get("passed"):
        print_success(event.message)
    elif event.type in ("verification_result", "rollback"):
        print_warning(event.message)
    if event.type == "fix_proposed" and event.data:
        fix = ProposedFix.from_dict(event.data)
        diff = format_fix_diff(fix) if fix else ""
        if diff:
            print_diff(diff, title=fix.file_path)


def print_audit_summary(audit_log: AuditLog) -> None:
    stats = audit_log.get_stats()
    print_header("Audit log")
    print_info(
        f"{stats['total']} calls: {stats['success']} succeeded, "
        f"{stats['failure']} failed, {stats['rejected']} rejected"
    )

    table = create_table(["Time", "Tool", "Risk", "Approved by", "Result"], title="Recent calls")
    for entry in audit_log.get_recent(20):
        status = "ok" if entry.success else ("rejected" if entry.rejected else "failed")
        table.add_row(
            entry.timestamp[:19], entry.tool_name, entry.risk_level, entry.approved_by, status
        )
    console.print(table)


# =============================================================================
# Session
# =============================================================================

async def run_chat(args: argparse.Namespace) -> None:
    project_dir = args.project_dir.resolve()
    session_maker = await init_db(project_dir)
    try:
        async with session_maker() as db_session:
            await chat_session(args, project_dir, db_session)
    finally:
        await close_db()


async def chat_session(args: argparse.Namespace, project_dir: Path, db_session: AsyncSession) -> None:
    audit_log = await create_audit_log_async(project_dir, db_session)
    if args.audit:
        if args.json:
            print_json_data([entry.to_dict() for entry in audit_log.get_all()], title="Audit log")
        else:
            print_audit_summary(audit_log)
        return

    config = AgentConfig.load(project_dir, provider=args.provider, model=args.model)
    if not config.is_configured:
        print_error(f"No API key configured for {config.provider}")
        print_muted("Set it in your .env file or environment.")
        return

    executors = ExecutorRegistry()
    local = register_local_executors(executors, project_dir)
    # Only tools with a local executor are offered to the model
    registry = create_default_registry().subset(executors.names())
    approvals = TerminalApprovals(args.approval_timeout)
    risk_gate = RiskGate(
        registry,
        executors,
        audit_log,
        approval_callback=approvals.request,
        notify=print_notification,
    )

    learning = await create_learning_memory_async(project_dir, db_session)
    ooda_engine = create_ooda_engine(
        OODAConfig.from_env(),
        risk_gate,
        executors,
        learning,
        project_key=str(project_dir),
        project_files=local.snapshot,
        analysis=local.analysis,
    )
    ooda_engine.set_session(db_session)
    ooda_engine.on_event(show_ooda_event)

    provider = ProviderClient(config)
    orchestrator = AgentOrchestrator(
        provider,
        registry,
        risk_gate,
        ooda_engine=ooda_engine,
        on_tool_call=show_tool_call,
    )
    context = ProjectContext(project_name=project_dir.name)

    print_header(f"CodeForge Agent ({config.provider}: {config.model})")
    print_muted(f"Project: {project_dir}")
    print_muted("Type 'exit' to quit.")

    messages: list[AgentMessage] = []
    try:
        while True:
            await approvals.drain()
            console.print()
            text = (await asyncio.to_thread(prompt, "You")).strip()
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break

            messages.append(AgentMessage.user(text))
            try:
                result = await orchestrator.run_turn(messages, context)
            except ProviderError as e:
                print_error(str(e))
                messages.pop()
                continue

            messages.extend(result.new_messages)
            console.print()
            print_markdown(result.message.content)
            print_muted(f"tokens: {result.usage.total_tokens:,}")
    finally:
        await provider.aclose()
        await ooda_engine.provider.aclose()


def main() -> None:
    """Main entry point."""
    args = parse_args()
    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        asyncio.run(run_chat(args))
    except KeyboardInterrupt:
        console.print()
        print_warning("Interrupted by user")
    except AgentError as e:
        console.print()
        print_error(f"Fatal error: {e}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
