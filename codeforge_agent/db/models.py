"""
Database Models for CodeForge Agent
===================================

SQLAlchemy models for the audit trail, learned fix patterns and
self-improvement cycle history.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import String, Integer, DateTime, JSON, Text, Boolean, Float
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class AuditEntryModel(Base):
    """One executed (or rejected) tool call. Rows are never updated."""
    __tablename__ = "audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    timestamp: Mapped[str] = mapped_column(String(40), index=True)  # ISO timestamp
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    tool_name: Mapped[str] = mapped_column(String(80), index=True)
    category: Mapped[str] = mapped_column(String(20), index=True)
    risk_level: Mapped[str] = mapped_column(String(10), index=True)  # auto, notify, confirm
    args: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    result: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    approved_by: Mapped[str] = mapped_column(String(10))  # auto, user
    success: Mapped[bool] = mapped_column(Boolean, index=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class LearningPatternModel(Base):
    """A fix pattern learned from completed self-improvement cycles."""
    __tablename__ = "learning_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pattern_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    category: Mapped[str] = mapped_column(String(30), index=True)
    signature: Mapped[str] = mapped_column(Text)

    description: Mapped[str] = mapped_column(Text, default="")
    solution: Mapped[str] = mapped_column(Text, default="")
    files_involved: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Statistics
    successes: Mapped[int] = mapped_column(Integer, default=0)
    total_uses: Mapped[int] = mapped_column(Integer, default=0)

    last_used: Mapped[str] = mapped_column(String(40))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OODACycleModel(Base):
    """History of self-improvement cycles."""
    __tablename__ = "ooda_cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cycle_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    issue: Mapped[str] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(30), index=True)
    status: Mapped[str] = mapped_column(String(20), index=True)  # running, completed, failed

    phases: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    proposed_fixes: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    token_usage: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failed_phase: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    started_at: Mapped[str] = mapped_column(String(40))
    completed_at: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
