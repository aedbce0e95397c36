"""
Database Models for safetygate
==============================

SQLAlchemy models for the durable half of the gate system: enforcement
sessions (the discover_patterns / validate_complete token) and their audit
rows.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import String, Integer, DateTime, ForeignKey, JSON, Text, Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class EnforcementSessionModel(Base):
    """One pattern-discovery token and its validation outcome."""
    __tablename__ = "enforcement_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_token: Mapped[str] = mapped_column(String(40), unique=True, index=True)

    team_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    project_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    project_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Reference to the in-memory SafetySession (enhanced mode)
    safety_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    task: Mapped[str] = mapped_column(Text)
    planned_files: Mapped[List[str]] = mapped_column(JSON, default=list)
    keywords: Mapped[List[str]] = mapped_column(JSON, default=list)
    patterns_returned: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Gates
    start_gate_passed: Mapped[bool] = mapped_column(Boolean, default=False)
    end_gate_passed: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active, completed, failed, expired

    # Recorded validation outcome
    validation_issues: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    safety_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tests_run: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    tests_passed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    typescript_passed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_gate_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    discoveries: Mapped[List["PatternDiscoveryModel"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )
    validations: Mapped[List["PatternValidationModel"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )


class PatternDiscoveryModel(Base):
    """Audit row for a discover_patterns call."""
    __tablename__ = "pattern_discoveries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("enforcement_sessions.id"))
    task: Mapped[str] = mapped_column(Text)
    files: Mapped[List[str]] = mapped_column(JSON, default=list)
    keywords: Mapped[List[str]] = mapped_column(JSON, default=list)
    patterns_matched: Mapped[List[str]] = mapped_column(JSON, default=list)
    has_exact_match: Mapped[bool] = mapped_column(Boolean, default=True)
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped["EnforcementSessionModel"] = relationship(back_populates="discoveries")


class PatternValidationModel(Base):
    """Audit row for a validate_complete checklist evaluation."""
    __tablename__ = "pattern_validations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("enforcement_sessions.id"))
    feature_name: Mapped[str] = mapped_column(String(255))
    feature_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    files_modified: Mapped[List[str]] = mapped_column(JSON, default=list)
    tests_written: Mapped[List[str]] = mapped_column(JSON, default=list)
    passed: Mapped[bool] = mapped_column(Boolean, default=False)
    issues: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    safety_score: Mapped[int] = mapped_column(Integer, default=0)
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped["EnforcementSessionModel"] = relationship(back_populates="validations")
