"""
Learning Memory
===============

Remembers how self-improvement cycles turned out so later cycles can be
biased toward fixes that worked before.

Patterns are keyed by issue category, optionally refined by a problem
signature. Each completed cycle records a success or a failure against its
pattern; success_rate is always successes / total_uses. Patterns are never
deleted automatically.

Storage: patterns are persisted in the .codeforge/project.db database when a
session is attached.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codeforge_agent.db.models import LearningPatternModel
from codeforge_agent.models import new_id

logger = logging.getLogger(__name__)


SIMILARITY_WEIGHT = 0.7
SUCCESS_WEIGHT = 0.3
MIN_SIMILARITY_SCORE = 0.15
MAX_SIMILAR_RESULTS = 5

_STOPWORDS = {"the", "and", "for", "from", "with", "that", "this"}
_SPLIT_RE = re.compile(r"[\s|,;:.!?()\[\]{}'\"/\\→]+")


def extract_keywords(text: Optional[str]) -> set[str]:
    """Lowercased words longer than two characters, minus stopwords."""
    if not text or not str(text).strip():
        return set()
    return {
        word for word in _SPLIT_RE.split(str(text).lower())
        if len(word) > 2 and word not in _STOPWORDS
    }


def build_signature(
    category: str,
    affected_area: str = "",
    root_cause: str = "",
    files: Optional[list[str]] = None,
) -> str:
    """Compact problem signature: category | area | cause | first three files."""
    parts = [category, affected_area, root_cause[:100], *(files or [])[:3]]
    return " | ".join(p for p in parts if p)


@dataclass
class LearningPattern:
    """Outcome statistics for one kind of problem."""
    category: str
    signature: str = ""
    description: str = ""
    solution: str = ""
    files_involved: list[str] = field(default_factory=list)
    successes: int = 0
    total_uses: int = 0
    id: str = field(default_factory=lambda: new_id("pat"))
    last_used: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def key(self) -> tuple[str, str]:
        return (self.category, self.signature)

    @property
    def success_rate(self) -> float:
        if self.total_uses == 0:
            return 0.0
        return self.successes / self.total_uses

    def record(self, success: bool) -> None:
        self.total_uses += 1
        if success:
            self.successes += 1
        self.last_used = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "signature": self.signature,
            "description": self.description,
            "solution": self.solution,
            "files_involved": self.files_involved,
            "successes": self.successes,
            "total_uses": self.total_uses,
            "success_rate": self.success_rate,
            "last_used": self.last_used,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningPattern":
        return cls(
            id=data["id"],
            category=data["category"],
            signature=data.get("signature", ""),
            description=data.get("description", ""),
            solution=data.get("solution", ""),
            files_involved=list(data.get("files_involved") or []),
            successes=int(data.get("successes", 0)),
            total_uses=int(data.get("total_uses", 0)),
            last_used=data.get("last_used", datetime.now(timezone.utc).isoformat()),
            created_at=data.get("created_at", datetime.now(timezone.utc).isoformat()),
        )


@dataclass
class SimilarPattern:
    pattern: LearningPattern
    score: float

    def to_dict(self) -> dict:
        return {"pattern": self.pattern.to_dict(), "score": round(self.score, 3)}


class LearningMemory:
    """
    Shared store of learned fix patterns.

    One instance is meant to be shared by every conversation in the process.
    record_outcome holds an asyncio.Lock across its read-modify-write, so
    concurrent cycles never lose an update.
    """

    def __init__(self, project_dir: Optional[Path] = None):
        self.project_dir = Path(project_dir) if project_dir else None
        self._db_session: Optional[AsyncSession] = None
        self._patterns: dict[tuple[str, str], LearningPattern] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._patterns)

    def set_session(self, session: AsyncSession) -> None:
        self._db_session = session

    async def init_async(self, session: AsyncSession) -> None:
        """Attach a database session and load stored patterns."""
        self._db_session = session
        await self._load_patterns_async()

    # =========================================================================
    # Async Database Methods
    # =========================================================================

    async def _load_patterns_async(self) -> None:
        if self._db_session is None:
            return

        result = await self._db_session.execute(select(LearningPatternModel))
        for row in result.scalars().all():
            pattern = LearningPattern(
                id=row.pattern_id,
                category=row.category,
                signature=row.signature,
                description=row.description,
                solution=row.solution,
                files_involved=list(row.files_involved or []),
                successes=row.successes,
                total_uses=row.total_uses,
                last_used=row.last_used,
                created_at=row.created_at.isoformat() if row.created_at else row.last_used,
            )
            self._patterns[pattern.key] = pattern

    async def _save_pattern_async(self, pattern: LearningPattern) -> None:
        if self._db_session is None:
            return

        result = await self._db_session.execute(
            select(LearningPatternModel).where(LearningPatternModel.pattern_id == pattern.id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = LearningPatternModel(pattern_id=pattern.id, category=pattern.category)
            self._db_session.add(row)

        row.signature = pattern.signature
        row.description = pattern.description
        row.solution = pattern.solution
        row.files_involved = list(pattern.files_involved)
        row.successes = pattern.successes
        row.total_uses = pattern.total_uses
        row.last_used = pattern.last_used
        await self._db_session.commit()

    # =========================================================================
    # Recording
    # =========================================================================

    async def record_outcome(
        self,
        category: str,
        success: bool,
        signature: str = "",
        description: str = "",
        solution: str = "",
        files_involved: Optional[list[str]] = None,
    ) -> LearningPattern:
        """
        Record the outcome of a cycle against its pattern.

        Creates the pattern on first use. Descriptive fields are refreshed
        from successful outcomes only.

        Returns:
            The updated pattern
        """
        async with self._lock:
            key = (category, signature)
            pattern = self._patterns.get(key)
            if pattern is None:
                pattern = LearningPattern(
                    category=category,
                    signature=signature,
                    description=description,
                    solution=solution,
                    files_involved=list(files_involved or []),
                )
                self._patterns[key] = pattern
            elif success:
                pattern.description = description or pattern.description
                pattern.solution = solution or pattern.solution
                if files_involved:
                    pattern.files_involved = list(files_involved)

            pattern.record(success)
            await self._save_pattern_async(pattern)

        logger.debug(
            "Pattern %s (%s): %d/%d", pattern.id, category, pattern.successes, pattern.total_uses
        )
        return pattern

    async def record_success(self, category: str, **kwargs) -> LearningPattern:
        return await self.record_outcome(category, True, **kwargs)

    async def record_failure(self, category: str, **kwargs) -> LearningPattern:
        return await self.record_outcome(category, False, **kwargs)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, category: str, signature: str = "") -> Optional[LearningPattern]:
        return self._patterns.get((category, signature))

    def get_all(self) -> list[LearningPattern]:
        return list(self._patterns.values())

    def find_by_category(self, category: str) -> list[LearningPattern]:
        """Patterns of one category, best success rate first."""
        return sorted(
            (p for p in self._patterns.values() if p.category == category),
            key=lambda p: p.success_rate,
            reverse=True,
        )

    def find_similar(self, issue_text: str, max_results: int = MAX_SIMILAR_RESULTS) -> list[SimilarPattern]:
        """
        Rank stored patterns against an issue description.

        Score = keyword Jaccard similarity * 0.7 + success_rate * 0.3;
        only scores above 0.15 are returned.
        """
        issue_keywords = extract_keywords(issue_text)
        results = []
        for pattern in self._patterns.values():
            pattern_keywords = extract_keywords(
                f"{pattern.signature} {pattern.description}"
            )
            union = issue_keywords | pattern_keywords
            similarity = len(issue_keywords & pattern_keywords) / len(union) if union else 0.0
            score = similarity * SIMILARITY_WEIGHT + pattern.success_rate * SUCCESS_WEIGHT
            if score > MIN_SIMILARITY_SCORE:
                results.append(SimilarPattern(pattern=pattern, score=score))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:max_results]

    def get_stats(self) -> dict:
        """Summary of everything learned so far."""
        patterns = list(self._patterns.values())
        total_uses = sum(p.total_uses for p in patterns)
        successes = sum(p.successes for p in patterns)

        by_category: dict[str, int] = {}
        file_counts: dict[str, int] = {}
        for pattern in patterns:
            by_category[pattern.category] = by_category.get(pattern.category, 0) + 1
            for path in pattern.files_involved:
                file_counts[path] = file_counts.get(path, 0) + pattern.total_uses

        top_files = sorted(file_counts.items(), key=lambda item: item[1], reverse=True)[:10]
        return {
            "total_patterns": len(patterns),
            "successful_patterns": sum(1 for p in patterns if p.success_rate > 0.5),
            "total_uses": total_uses,
            "successes": successes,
            "failures": total_uses - successes,
            "by_category": by_category,
            "top_files": [{"path": path, "count": count} for path, count in top_files],
        }

    def format_hints(self, similar: list[SimilarPattern]) -> str:
        """Render similar patterns as context for the orient phase."""
        if not similar:
            return ""
        lines = ["Previously seen fixes:"]
        for item in similar:
            p = item.pattern
            lines.append(
                f"- [{p.category}] {p.solution or p.description or p.signature} "
                f"(success {p.successes}/{p.total_uses})"
            )
        return "\n".join(lines)


def create_learning_memory(project_dir: Optional[Path] = None) -> LearningMemory:
    """Create a LearningMemory instance."""
    return LearningMemory(project_dir)


async def create_learning_memory_async(project_dir: Path, session: AsyncSession) -> LearningMemory:
    """Create a LearningMemory backed by the project database."""
    memory = LearningMemory(project_dir)
    await memory.init_async(session)
    return memory
