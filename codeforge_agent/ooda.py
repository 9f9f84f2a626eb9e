"""
OODA Self-Improvement Engine
============================

Runs an Observe -> Orient -> Decide -> Act -> Verify cycle against the
project's own source code.

Observe, orient and decide are LLM calls that each consume the previous
phase's result. Act applies the proposed fixes as ordinary create_file,
update_file and delete_file tool calls through the RiskGate, so every change
is gated and audited exactly like a chat-initiated one. Verify re-reads the
changed files and runs the verification checks.

A failing phase fails the whole cycle; later phases never run. When act or
verify fails after changes were applied, the applied changes are undone in
reverse order, again through the RiskGate. Progress is published on a
fire-and-forget event stream.

Usage:
    engine = create_ooda_engine(OODAConfig.from_env(), risk_gate, executors, learning)
    unsubscribe = engine.on_event(lambda event: print(event.message))
    cycle = await engine.run_cycle("the sidebar button does not work")
    print(engine.format_cycle(cycle))
"""

import asyncio
import difflib
import inspect
import json
import logging
import re
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from codeforge_agent.analysis import ProjectFilesLoader, SelfAnalysisEngine, is_source_file
from codeforge_agent.config import OODAConfig, is_protected_path
from codeforge_agent.db.models import OODACycleModel
from codeforge_agent.errors import CycleFailure
from codeforge_agent.learning import LearningMemory, build_signature
from codeforge_agent.models import AgentMessage, ToolCall, ToolDefinition, new_id
from codeforge_agent.prompts import get_ooda_prompt
from codeforge_agent.providers.base import ProviderResponse, TokenUsage
from codeforge_agent.providers.client import ProviderClient
from codeforge_agent.risk import RiskGate, coerce_result
from codeforge_agent.tools.registry import ExecutorRegistry
from codeforge_agent.verification import FileChange, VerificationResult, verify_changes

logger = logging.getLogger(__name__)


DEFAULT_CONFIDENCE = 0.5

# Observe ranks this many candidates when no files are given, and keeps the top few
RELATED_FILE_CANDIDATES = 15
AUTO_DETECTED_FILES = 5


# =============================================================================
# Request Classification
# =============================================================================

SELF_IMPROVE_KEYWORDS = (
    "خطأ في الواجهة",
    "مشكلة في",
    "لا يعمل",
    "لا تعمل",
    "أصلح",
    "حسّن",
    "عدّل",
    "الزر لا",
    "الشاشة",
    "خلل",
    "باغ",
    "تحسين الأداء",
    "بطيء",
    "حلّ المشكلة",
    "أصلح الكود",
    "self-improve",
    "fix the",
    "bug in",
    "broken",
    "doesn't work",
    "does not work",
    "improve",
)

# Checked in order; the first match wins
CATEGORY_KEYWORDS = (
    ("performance", ("أداء", "بطيء", "performance", "slow")),
    ("style", ("تصميم", "style", "css")),
    ("accessibility", ("وصول", "accessibility", "a11y", "aria")),
    ("ui_bug", ("واجه", "زر", "شاشة", "الشريط", "button", "sidebar", "interface", "render")),
)
DEFAULT_CATEGORY = "logic_error"


def _keyword_pattern(keyword: str) -> re.Pattern:
    # English keywords match whole words with plain suffixes; Arabic ones match anywhere
    if keyword.isascii():
        return re.compile(rf"\b{re.escape(keyword)}(?:s|es|ed|ing)?\b")
    return re.compile(re.escape(keyword))


_CATEGORY_PATTERNS = [
    (category, [_keyword_pattern(keyword) for keyword in keywords])
    for category, keywords in CATEGORY_KEYWORDS
]


def is_self_improve_request(text: str) -> bool:
    """Keyword heuristic: does this message report a problem in the IDE itself?"""
    lowered = (text or "").lower()
    return any(keyword.lower() in lowered for keyword in SELF_IMPROVE_KEYWORDS)


def detect_category(text: str) -> str:
    lowered = (text or "").lower()
    for category, patterns in _CATEGORY_PATTERNS:
        if any(pattern.search(lowered) for pattern in patterns):
            return category
    return DEFAULT_CATEGORY


# =============================================================================
# Data Types
# =============================================================================

class OODAPhase(str, Enum):
    OBSERVE = "observe"
    ORIENT = "orient"
    DECIDE = "decide"
    ACT = "act"
    VERIFY = "verify"


PHASE_ORDER = (
    OODAPhase.OBSERVE,
    OODAPhase.ORIENT,
    OODAPhase.DECIDE,
    OODAPhase.ACT,
    OODAPhase.VERIFY,
)


class CycleStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class OODAEventType(str, Enum):
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    LLM_REQUEST = "llm_request"
    LLM_RESPONSE = "llm_response"
    FIX_PROPOSED = "fix_proposed"
    FIX_APPLIED = "fix_applied"
    VERIFICATION_RESULT = "verification_result"
    ROLLBACK = "rollback"
    PATTERN_LEARNED = "pattern_learned"
    ERROR = "error"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PhaseResult:
    """Output of one phase."""
    analysis: str
    suggestions: list[str] = field(default_factory=list)
    confidence: float = DEFAULT_CONFIDENCE
    fixes: list[dict] = field(default_factory=list)
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "analysis": self.analysis,
            "suggestions": self.suggestions,
            "confidence": self.confidence,
            "fixes": self.fixes,
            "timestamp": self.timestamp,
        }


@dataclass
class ProposedFix:
    """A single-file change produced by the decide phase."""
    file_path: str
    type: str = "edit"  # create, edit, delete
    explanation: str = ""
    old_str: Optional[str] = None
    new_str: Optional[str] = None
    content: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> Optional["ProposedFix"]:
        """Build a fix from model output; None if it names no file."""
        file_path = data.get("filePath") or data.get("file_path") or data.get("path")
        if not isinstance(file_path, str) or not file_path.strip():
            return None
        fix_type = str(data.get("type") or "edit").lower()
        if fix_type not in ("create", "edit", "delete"):
            fix_type = "edit"
        return cls(
            file_path=file_path.strip(),
            type=fix_type,
            explanation=str(data.get("explanation") or ""),
            old_str=data.get("oldStr") if data.get("oldStr") is not None else data.get("old_str"),
            new_str=data.get("newStr") if data.get("newStr") is not None else data.get("new_str"),
            content=data.get("content"),
        )

    def to_dict(self) -> dict:
        return {
            "filePath": self.file_path,
            "type": self.type,
            "explanation": self.explanation,
            "oldStr": self.old_str,
            "newStr": self.new_str,
            "content": self.content,
        }


@dataclass
class OODAEvent:
    phase: str
    type: str
    message: str
    cycle_id: str = ""
    data: Optional[dict] = None
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        result = {
            "phase": self.phase,
            "type": self.type,
            "message": self.message,
            "cycle_id": self.cycle_id,
            "timestamp": self.timestamp,
        }
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass
class OODACycle:
    """State of one self-improvement cycle."""
    issue: str
    category: str
    affected_files: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("cycle"))
    status: CycleStatus = CycleStatus.RUNNING
    phases: dict[str, PhaseResult] = field(default_factory=dict)
    proposed_fixes: list[ProposedFix] = field(default_factory=list)
    changes: list[FileChange] = field(default_factory=list)
    file_contents: dict[str, str] = field(default_factory=dict)
    verification: Optional[VerificationResult] = None
    # Paths whose changes were undone after a failure, in undo order
    rolled_back: list[str] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    error: Optional[str] = None
    failed_phase: Optional[str] = None
    started_at: str = field(default_factory=_now)
    completed_at: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == CycleStatus.COMPLETED

    @property
    def confidence(self) -> Optional[float]:
        decide = self.phases.get(OODAPhase.DECIDE.value)
        return decide.confidence if decide else None

    @property
    def scope(self) -> set[str]:
        return set(self.affected_files) | {fix.file_path for fix in self.proposed_fixes}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue": self.issue,
            "category": self.category,
            "affected_files": self.affected_files,
            "status": self.status.value,
            "phases": {name: result.to_dict() for name, result in self.phases.items()},
            "proposed_fixes": [fix.to_dict() for fix in self.proposed_fixes],
            "verification": self.verification.to_dict() if self.verification else None,
            "rolled_back": self.rolled_back,
            "token_usage": self.token_usage.to_dict(),
            "error": self.error,
            "failed_phase": self.failed_phase,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


# =============================================================================
# Phase Output Parsing
# =============================================================================

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(raw: str) -> Optional[dict]:
    """Pull a JSON object out of a ```json fence or the outermost {...} block."""
    if not raw:
        return None
    candidates = [m.group(1).strip() for m in _JSON_FENCE_RE.finditer(raw)]
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw[start:end + 1])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_phase_json(raw: str) -> PhaseResult:
    """
    Parse a phase reply. Unparseable output becomes the analysis text with
    no suggestions and a neutral confidence.
    """
    data = extract_json(raw)
    if data is None:
        return PhaseResult(analysis=raw or "", confidence=DEFAULT_CONFIDENCE)

    suggestions = data.get("suggestions")
    if not isinstance(suggestions, list):
        suggestions = []
    fixes = data.get("fixes")
    if not isinstance(fixes, list):
        fixes = []
    try:
        confidence = float(data.get("confidence", DEFAULT_CONFIDENCE))
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE

    return PhaseResult(
        analysis=str(data.get("analysis") or ""),
        suggestions=[str(s) for s in suggestions],
        confidence=min(max(confidence, 0.0), 1.0),
        fixes=[f for f in fixes if isinstance(f, dict)],
    )


def _content_of(data: Any) -> Optional[str]:
    if isinstance(data, str):
        return data
    if isinstance(data, dict) and isinstance(data.get("content"), str):
        return data["content"]
    return None


# =============================================================================
# Engine
# =============================================================================

class OODAProvider(Protocol):
    def is_configured(self) -> bool: ...

    async def send(
        self,
        messages: list[AgentMessage],
        tools: list[ToolDefinition],
        system_prompt: str = "",
    ) -> ProviderResponse: ...


EventHandler = Callable[[OODAEvent], Any]


class ProjectLocks:
    """
    Per-project cycle locks.

    Engines that share one table never run overlapping cycles on the same
    project. A lock lives only while a cycle holds or waits on it.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def get(self, project_key: str) -> asyncio.Lock:
        lock = self._locks.get(project_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class OODAEngine:
    """
    Self-improvement state machine.

    Uses its own provider connection, separate from the chat provider, and
    the same RiskGate and executors as the chat loop.

    Args:
        project_files: Loads the project snapshot used to pick files when
            none are given and to check imports after changes
        analysis: Structure analysis engine, shared with the analysis tools
        locks: Lock table shared with other engines on the same projects
    """

    def __init__(
        self,
        provider: OODAProvider,
        risk_gate: RiskGate,
        executors: ExecutorRegistry,
        learning: Optional[LearningMemory] = None,
        config: Optional[OODAConfig] = None,
        project_key: str = "default",
        project_files: Optional[ProjectFilesLoader] = None,
        analysis: Optional[SelfAnalysisEngine] = None,
        locks: Optional[ProjectLocks] = None,
    ):
        self.provider = provider
        self.risk_gate = risk_gate
        self.executors = executors
        self.learning = learning
        self.config = config or OODAConfig()
        self.project_key = project_key
        self.project_files = project_files
        self.analysis = analysis or SelfAnalysisEngine()
        self.locks = locks if locks is not None else ProjectLocks()

        self._handlers: list[EventHandler] = []
        self._background: set[asyncio.Task] = set()
        self._db_session: Optional[AsyncSession] = None
        self.history: list[OODACycle] = []

        self.stats = {
            "cycles": 0,
            "completed": 0,
            "failed": 0,
            "fixes_proposed": 0,
            "fixes_applied": 0,
            "rollbacks": 0,
        }

    def set_session(self, session: AsyncSession) -> None:
        self._db_session = session

    def is_ready(self) -> bool:
        return self.provider is not None and self.provider.is_configured()

    # =========================================================================
    # Events
    # =========================================================================

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        """
        Subscribe to cycle events.

        Returns:
            A function that removes the subscription
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _emit(
        self,
        cycle: OODACycle,
        phase: str,
        event_type: OODAEventType,
        message: str,
        data: Optional[dict] = None,
    ) -> None:
        event = OODAEvent(
            phase=phase,
            type=event_type.value,
            message=message,
            cycle_id=cycle.id,
            data=data,
        )
        for handler in list(self._handlers):
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    task = asyncio.ensure_future(outcome)
                    self._background.add(task)
                    task.add_done_callback(self._background.discard)
            except Exception as e:
                logger.warning("OODA event handler failed: %s", e)

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(
        self,
        issue: str,
        affected_files: Optional[list[str]] = None,
        file_contents: Optional[dict[str, str]] = None,
    ) -> OODACycle:
        """
        Run one full cycle for an issue.

        Args:
            issue: The user's problem description
            affected_files: Files already known to be involved
            file_contents: Contents already loaded, by path

        Returns:
            The finished cycle. Failures are reported through its status,
            error and failed_phase rather than raised.
        """
        cycle = OODACycle(
            issue=issue,
            category=detect_category(issue),
            affected_files=list(dict.fromkeys(affected_files or [])),
            file_contents=dict(file_contents or {}),
        )
        self.stats["cycles"] += 1
        self.history.append(cycle)

        guard_error = self._check_guards(cycle)
        if guard_error:
            self._fail(cycle, OODAPhase.OBSERVE.value, guard_error)
            await self._save_cycle_async(cycle)
            return cycle

        async with self.locks.get(self.project_key):
            await self._run_phases(cycle)

        if OODAPhase.DECIDE.value in cycle.phases:
            await self._record_learning(cycle)
        await self._save_cycle_async(cycle)
        return cycle

    def _check_guards(self, cycle: OODACycle) -> Optional[str]:
        if len(cycle.affected_files) > self.config.max_files:
            return (
                f"Too many affected files ({len(cycle.affected_files)}); "
                f"the limit is {self.config.max_files}"
            )
        protected = [f for f in cycle.affected_files if is_protected_path(f)]
        if protected:
            return f"Protected files cannot be self-modified: {', '.join(protected)}"
        return None

    async def _run_phases(self, cycle: OODACycle) -> None:
        handlers = {
            OODAPhase.OBSERVE: self._observe,
            OODAPhase.ORIENT: self._orient,
            OODAPhase.DECIDE: self._decide,
            OODAPhase.ACT: self._act,
            OODAPhase.VERIFY: self._verify,
        }
        for phase in PHASE_ORDER:
            self._emit(cycle, phase.value, OODAEventType.PHASE_START, f"{phase.value} started")
            try:
                result = await handlers[phase](cycle)
            except Exception as e:
                # A phase failure is a cycle outcome, not a crash
                if phase in (OODAPhase.ACT, OODAPhase.VERIFY) and cycle.changes:
                    await self._rollback(cycle, phase.value)
                self._fail(cycle, phase.value, str(e) or type(e).__name__)
                return
            cycle.phases[phase.value] = result
            self._emit(
                cycle, phase.value, OODAEventType.PHASE_COMPLETE, f"{phase.value} complete",
                {"confidence": result.confidence},
            )

        cycle.status = CycleStatus.COMPLETED
        cycle.completed_at = _now()
        self.stats["completed"] += 1
        logger.info("OODA cycle %s completed", cycle.id)

    def _fail(self, cycle: OODACycle, phase: str, error: str) -> None:
        cycle.status = CycleStatus.FAILED
        cycle.error = error
        cycle.failed_phase = phase
        cycle.completed_at = _now()
        self.stats["failed"] += 1
        logger.warning("OODA cycle %s failed in %s: %s", cycle.id, phase, error)
        self._emit(cycle, phase, OODAEventType.ERROR, error)

    async def _ask(self, cycle: OODACycle, phase: OODAPhase, content: str) -> PhaseResult:
        self._emit(cycle, phase.value, OODAEventType.LLM_REQUEST, f"Asking model ({phase.value})")
        response = await self.provider.send(
            [AgentMessage.user(content)], [], get_ooda_prompt(phase.value)
        )
        cycle.token_usage.add(response.usage)
        self._emit(
            cycle, phase.value, OODAEventType.LLM_RESPONSE, f"Model replied ({phase.value})",
            {"tokens": response.usage.total_tokens},
        )
        return parse_phase_json(response.text)

    async def _read_file(self, path: str) -> Optional[str]:
        """Read through the read_file executor; None if missing or unreadable."""
        executor = self.executors.get("read_file")
        if executor is None:
            return None
        try:
            result = coerce_result(await executor({"filePath": path}))
        except Exception as e:
            logger.debug("Could not read %s: %s", path, e)
            return None
        if not result.success:
            return None
        return _content_of(result.data)

    def _render_files(self, cycle: OODACycle) -> str:
        if not cycle.file_contents:
            return "(no file contents available)"
        blocks = [
            f"### {path}\n```\n{content}\n```"
            for path, content in cycle.file_contents.items()
        ]
        return "\n\n".join(blocks)

    async def _load_project_files(self) -> Optional[dict[str, str]]:
        if self.project_files is None:
            return None
        return await self.project_files()

    def _detect_files(self, cycle: OODACycle, files: dict[str, str]) -> list[str]:
        """Pick the files most likely involved in the issue."""
        related = self.analysis.find_related_files(cycle.issue, files, RELATED_FILE_CANDIDATES)
        paths = [r.file_path for r in related if not is_protected_path(r.file_path)]
        return paths[:min(AUTO_DETECTED_FILES, self.config.max_files)]

    def _describe_structure(self, cycle: OODACycle, files: Optional[dict[str, str]]) -> str:
        lines = []
        for path in cycle.affected_files:
            content = cycle.file_contents.get(path)
            if content is None or not is_source_file(path):
                continue
            lines.append(f"- {self.analysis.analyze_component(path, content, files).summary}")
        return "Structure:\n" + "\n".join(lines) if lines else ""

    # =========================================================================
    # Phases
    # =========================================================================

    async def _observe(self, cycle: OODACycle) -> PhaseResult:
        files = await self._load_project_files()
        if not cycle.affected_files and files:
            cycle.affected_files = self._detect_files(cycle, files)
            if cycle.affected_files:
                logger.info("Detected files for cycle %s: %s", cycle.id, ", ".join(cycle.affected_files))

        for path in cycle.affected_files:
            if path not in cycle.file_contents:
                content = await self._read_file(path)
                if content is not None:
                    cycle.file_contents[path] = content

        prompt = (
            f"Issue: {cycle.issue}\n"
            f"Category: {cycle.category}\n"
            f"Affected files: {', '.join(cycle.affected_files) or 'unknown'}\n\n"
            f"{self._render_files(cycle)}"
        )
        structure = self._describe_structure(cycle, files)
        if structure:
            prompt += f"\n\n{structure}"
        return await self._ask(cycle, OODAPhase.OBSERVE, prompt)

    async def _orient(self, cycle: OODACycle) -> PhaseResult:
        observe = cycle.phases[OODAPhase.OBSERVE.value]
        hints = ""
        if self.learning is not None:
            hints = self.learning.format_hints(self.learning.find_similar(cycle.issue))

        prompt = (
            f"Issue: {cycle.issue}\n\n"
            f"Observation:\n{observe.analysis}\n"
            + "".join(f"- {s}\n" for s in observe.suggestions)
        )
        if hints:
            prompt += f"\n{hints}\n"
        return await self._ask(cycle, OODAPhase.ORIENT, prompt)

    async def _decide(self, cycle: OODACycle) -> PhaseResult:
        orient = cycle.phases[OODAPhase.ORIENT.value]
        prompt = (
            f"Issue: {cycle.issue}\n\n"
            f"Root cause:\n{orient.analysis}\n"
            + "".join(f"- {s}\n" for s in orient.suggestions)
            + f"\n{self._render_files(cycle)}"
        )
        result = await self._ask(cycle, OODAPhase.DECIDE, prompt)

        for raw in result.fixes:
            fix = ProposedFix.from_dict(raw)
            if fix is None:
                continue
            if is_protected_path(fix.file_path):
                logger.warning("Dropping proposed fix for protected file %s", fix.file_path)
                continue
            cycle.proposed_fixes.append(fix)
            self.stats["fixes_proposed"] += 1
            self._emit(
                cycle, OODAPhase.DECIDE.value, OODAEventType.FIX_PROPOSED,
                f"{fix.type} {fix.file_path}", fix.to_dict(),
            )

        if len(cycle.proposed_fixes) > self.config.max_files:
            raise CycleFailure(
                OODAPhase.DECIDE.value,
                f"Fix plan touches {len(cycle.proposed_fixes)} files; "
                f"the limit is {self.config.max_files}",
            )
        return result

    async def _act(self, cycle: OODACycle) -> PhaseResult:
        for fix in cycle.proposed_fixes:
            change, call = await self._prepare_change(cycle, fix)
            result = await self.risk_gate.execute(call)
            if not result.success:
                raise CycleFailure(
                    OODAPhase.ACT.value,
                    f"{call.tool_name} {fix.file_path} failed: {result.error}",
                )
            cycle.changes.append(change)
            # Later fixes to the same file apply on top of this one
            if change.change_type == "delete":
                cycle.file_contents.pop(change.file_path, None)
            else:
                cycle.file_contents[change.file_path] = change.new_content
            self.stats["fixes_applied"] += 1
            self._emit(
                cycle, OODAPhase.ACT.value, OODAEventType.FIX_APPLIED,
                f"{fix.type} {fix.file_path}", {"tool": call.tool_name},
            )

        return PhaseResult(
            analysis=f"Applied {len(cycle.changes)} of {len(cycle.proposed_fixes)} fixes",
            suggestions=[f"{c.change_type} {c.file_path}" for c in cycle.changes],
            confidence=1.0,
        )

    async def _current_content(self, cycle: OODACycle, path: str) -> Optional[str]:
        content = cycle.file_contents.get(path)
        if content is None:
            content = await self._read_file(path)
        return content

    async def _prepare_change(self, cycle: OODACycle, fix: ProposedFix) -> tuple[FileChange, ToolCall]:
        """Build the tool call for a fix and the change record needed to undo it."""
        if fix.type == "delete":
            change = FileChange(
                fix.file_path, "delete",
                old_content=await self._current_content(cycle, fix.file_path),
            )
            return change, ToolCall(new_id("ooda"), "delete_file", {"nodeId": fix.file_path})

        if fix.type == "create":
            content = fix.content if fix.content is not None else (fix.new_str or "")
            change = FileChange(fix.file_path, "create", new_content=content)
            return change, ToolCall(
                new_id("ooda"), "create_file", {"name": fix.file_path, "content": content}
            )

        current = await self._current_content(cycle, fix.file_path)
        if current is None:
            raise CycleFailure(OODAPhase.ACT.value, f"Cannot read {fix.file_path} to edit it")

        if fix.old_str:
            if fix.old_str not in current:
                raise CycleFailure(
                    OODAPhase.ACT.value, f"Text to replace not found in {fix.file_path}"
                )
            new_content = current.replace(fix.old_str, fix.new_str or "", 1)
        elif fix.content is not None:
            new_content = fix.content
        else:
            raise CycleFailure(OODAPhase.ACT.value, f"Edit for {fix.file_path} has no oldStr")

        change = FileChange(fix.file_path, "edit", old_content=current, new_content=new_content)
        return change, ToolCall(
            new_id("ooda"), "update_file", {"fileId": fix.file_path, "newContent": new_content}
        )

    async def _verify(self, cycle: OODACycle) -> PhaseResult:
        final: dict[str, str] = {}
        for change in cycle.changes:
            final[change.file_path] = change.change_type

        contents: dict[str, str] = {}
        for path, change_type in final.items():
            if change_type == "delete":
                continue
            content = await self._read_file(path)
            if content is not None:
                contents[path] = content

        files = await self._load_project_files()
        if files is not None:
            deleted = {path for path, change_type in final.items() if change_type == "delete"}
            files = {path: text for path, text in files.items() if path not in deleted}
            files.update(contents)

        verification = verify_changes(cycle.changes, contents, cycle.scope, files)
        cycle.verification = verification
        self._emit(
            cycle, OODAPhase.VERIFY.value, OODAEventType.VERIFICATION_RESULT,
            "Verification passed" if verification.passed else verification.reason,
            verification.to_dict(),
        )
        if not verification.passed:
            raise CycleFailure(OODAPhase.VERIFY.value, verification.reason)

        return PhaseResult(
            analysis=f"All {len(verification.checks)} checks passed",
            suggestions=[c.details for c in verification.checks],
            confidence=1.0,
        )

    # =========================================================================
    # Rollback
    # =========================================================================

    def _undo_call(self, change: FileChange) -> Optional[ToolCall]:
        if change.change_type == "create":
            return ToolCall(new_id("ooda"), "delete_file", {"nodeId": change.file_path})
        if change.old_content is None:
            return None
        if change.change_type == "edit":
            return ToolCall(
                new_id("ooda"), "update_file",
                {"fileId": change.file_path, "newContent": change.old_content},
            )
        return ToolCall(
            new_id("ooda"), "create_file",
            {"name": change.file_path, "content": change.old_content},
        )

    async def _rollback(self, cycle: OODACycle, phase: str) -> None:
        """
        Undo applied changes, newest first.

        A change that cannot be undone is logged and skipped; the remaining
        changes are still undone.
        """
        self.stats["rollbacks"] += 1
        for change in reversed(cycle.changes):
            call = self._undo_call(change)
            if call is None:
                logger.warning(
                    "Cannot roll back %s of %s: previous content unknown",
                    change.change_type, change.file_path,
                )
                continue
            try:
                result = await self.risk_gate.execute(call)
            except Exception as e:
                logger.warning("Rollback of %s %s raised: %s", change.change_type, change.file_path, e)
                continue
            if not result.success:
                logger.warning(
                    "Rollback of %s %s failed: %s", change.change_type, change.file_path, result.error
                )
                continue

            cycle.rolled_back.append(change.file_path)
            if change.change_type == "create":
                cycle.file_contents.pop(change.file_path, None)
            else:
                cycle.file_contents[change.file_path] = change.old_content

        self._emit(
            cycle, phase, OODAEventType.ROLLBACK,
            f"Rolled back {len(cycle.rolled_back)} of {len(cycle.changes)} changes",
            {"files": list(cycle.rolled_back)},
        )

    # =========================================================================
    # Learning and Persistence
    # =========================================================================

    async def _record_learning(self, cycle: OODACycle) -> None:
        if self.learning is None:
            return

        orient = cycle.phases.get(OODAPhase.ORIENT.value)
        decide = cycle.phases.get(OODAPhase.DECIDE.value)
        files = [fix.file_path for fix in cycle.proposed_fixes]
        pattern = await self.learning.record_outcome(
            cycle.category,
            cycle.succeeded,
            signature=build_signature(
                cycle.category,
                root_cause=orient.analysis if orient else "",
                files=files,
            ),
            description=cycle.issue[:200],
            solution=decide.analysis if decide else "",
            files_involved=files,
        )
        self._emit(
            cycle, cycle.failed_phase or OODAPhase.VERIFY.value,
            OODAEventType.PATTERN_LEARNED,
            f"Recorded {'success' if cycle.succeeded else 'failure'} for {cycle.category}",
            {"pattern_id": pattern.id, "success_rate": pattern.success_rate},
        )

    async def _save_cycle_async(self, cycle: OODACycle) -> None:
        if self._db_session is None:
            return
        self._db_session.add(OODACycleModel(
            cycle_id=cycle.id,
            issue=cycle.issue,
            category=cycle.category,
            status=cycle.status.value,
            phases={name: result.to_dict() for name, result in cycle.phases.items()},
            proposed_fixes=[fix.to_dict() for fix in cycle.proposed_fixes],
            token_usage=cycle.token_usage.to_dict(),
            confidence=cycle.confidence,
            error=cycle.error,
            failed_phase=cycle.failed_phase,
            started_at=cycle.started_at,
            completed_at=cycle.completed_at,
        ))
        await self._db_session.commit()

    def get_stats(self) -> dict:
        return {**self.stats, "ready": self.is_ready()}

    # =========================================================================
    # Formatting
    # =========================================================================

    def format_cycle(self, cycle: OODACycle) -> str:
        """Render a cycle as a markdown report."""
        if not cycle.phases:
            return (
                f"## Self-improvement cycle failed\n\n{cycle.error or 'Unknown error'}\n\n"
                f"**Cycle:** `{cycle.id}`"
            )

        title = "Self-improvement cycle" if cycle.succeeded else "Self-improvement cycle (failed)"
        sections = [f"## {title}", f"**Cycle:** `{cycle.id}` | **Category:** {cycle.category}"]

        for phase in (OODAPhase.OBSERVE, OODAPhase.ORIENT, OODAPhase.DECIDE):
            result = cycle.phases.get(phase.value)
            if result is None:
                continue
            sections.append(f"\n### {phase.value.capitalize()}")
            sections.append(result.analysis)
            for i, suggestion in enumerate(result.suggestions, 1):
                sections.append(f"{i}. {suggestion}")

        if cycle.proposed_fixes:
            sections.append("\n### Fixes")
            for i, fix in enumerate(cycle.proposed_fixes, 1):
                sections.append(f"\n**{i}. `{fix.file_path}`** ({fix.type})")
                if fix.explanation:
                    sections.append(fix.explanation)
                preview = format_fix_diff(fix)
                if preview:
                    sections.append(f"```diff\n{preview}\n```")

        if cycle.verification is not None:
            sections.append("\n### Verify")
            for check in cycle.verification.checks:
                mark = "passed" if check.passed else "FAILED"
                sections.append(f"- {check.name}: {mark} ({check.details})")

        if cycle.error:
            sections.append(f"\n**Error ({cycle.failed_phase}):** {cycle.error}")
        if cycle.rolled_back:
            sections.append(f"**Rolled back:** {', '.join(cycle.rolled_back)}")

        sections.append(f"\n---\n*Tokens: {cycle.token_usage.total_tokens:,}*")
        return "\n".join(sections)


def format_fix_diff(fix: ProposedFix) -> str:
    if fix.type != "edit" or fix.old_str is None or fix.new_str is None:
        return ""
    diff = difflib.unified_diff(
        fix.old_str.splitlines(),
        fix.new_str.splitlines(),
        fromfile=f"a/{fix.file_path}",
        tofile=f"b/{fix.file_path}",
        lineterm="",
    )
    return "\n".join(diff)


def create_ooda_engine(
    config: OODAConfig,
    risk_gate: RiskGate,
    executors: ExecutorRegistry,
    learning: Optional[LearningMemory] = None,
    project_key: str = "default",
    http_client: Optional[httpx.AsyncClient] = None,
    project_files: Optional[ProjectFilesLoader] = None,
    analysis: Optional[SelfAnalysisEngine] = None,
    locks: Optional[ProjectLocks] = None,
) -> OODAEngine:
    """Create an OODAEngine with its own provider connection."""
    provider = ProviderClient(config.to_agent_config(), http_client=http_client)
    return OODAEngine(
        provider,
        risk_gate,
        executors,
        learning=learning,
        config=config,
        project_key=project_key,
        project_files=project_files,
        analysis=analysis,
        locks=locks,
    )
