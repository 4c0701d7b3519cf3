"""
GrantMatch Database Models
SQLAlchemy ORM models for grants, organization profiles, and the match cache.

Column types are portable (JSON, timezone-aware DateTime) so the same models
run on PostgreSQL in production and SQLite in tests.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Grant(Base):
    """
    Grant opportunities from various funding sources.

    List-like fields are stored as JSON. Older rows may hold JSON-encoded
    strings instead; the data source adapter decodes both.
    """

    __tablename__ = "grants"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Unique identifier for the grant",
    )
    source: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Data source (e.g., 'grants_gov', 'sam_gov', 'state_portal')",
    )
    title: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Grant title/name",
    )
    agency: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Funding agency or foundation name",
    )
    summary: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Short grant summary",
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Full grant description",
    )
    categories: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
        doc="Category labels",
    )
    eligibility: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
        doc="Eligibility as {'tags': [...], 'raw_text': ...}",
    )
    locations: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
        doc="Geographic availability as [{'type': ..., 'value': ...}]",
    )
    amount_min: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Minimum funding amount in USD",
    )
    amount_max: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Maximum funding amount in USD",
    )
    amount_text: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Free-text award description when amounts are not structured",
    )
    funding_type: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        doc="grant, loan, tax_credit, rebate, ...",
    )
    purpose_tags: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
        doc="What the funds may be used for",
    )
    deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Application deadline; null means rolling",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="open",
        doc="open, closed, or forecasted",
    )
    quality_score: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        doc="Listing completeness score (0-100)",
    )
    url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Link to the grant opportunity",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        doc="Record creation timestamp",
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=utcnow,
        onupdate=utcnow,
        doc="Last content change; cached analyses older than this are stale",
    )

    __table_args__ = (
        Index("ix_grants_status", status),
        Index("ix_grants_deadline_asc", deadline.asc()),
    )

    def __repr__(self) -> str:
        return f"<Grant(id={self.id}, title='{self.title[:50]}...')>"


class User(Base):
    """User accounts that own an organization profile."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Unique identifier for the user",
    )
    email: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        unique=True,
        doc="User email address",
    )
    name: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Display name",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        doc="Account creation timestamp",
    )

    profile: Mapped[Optional["OrganizationProfile"]] = relationship(
        "OrganizationProfile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class OrganizationProfile(Base):
    """
    Organizational profile used for grant matching.

    profile_version is bumped whenever a matching-relevant field changes so
    cached match analyses for the old profile are treated as stale.
    """

    __tablename__ = "organization_profiles"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        doc="Owning user",
    )
    entity_type: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        doc="Applicant organization category",
    )
    country: Mapped[str] = mapped_column(
        String(2),
        nullable=False,
        default="US",
    )
    state: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        doc="State code or name",
    )
    industry_tags: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
        doc="Focus areas",
    )
    size_band: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    stage: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    annual_budget: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    goals: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    grant_preferences: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    profile_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Incremented on matching-relevant changes",
    )
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    user: Mapped["User"] = relationship("User", back_populates="profile")

    def __repr__(self) -> str:
        return f"<OrganizationProfile(user_id={self.user_id}, version={self.profile_version})>"


class GrantMatchCache(Base):
    """
    Cached AI match analysis for a (user, grant) pair.

    No foreign keys: orphans left behind by deleted users or grants are
    removed by the periodic cleanup sweep.
    """

    __tablename__ = "grant_match_cache"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="User the analysis was computed for",
    )
    grant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Analyzed grant",
    )
    profile_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Profile version at analysis time",
    )
    grant_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Grant updated_at at analysis time",
    )
    match_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="AI match score (0-100)",
    )
    eligibility_status: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)
    fit_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    why_match: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_steps: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    concerns: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    what_you_can_fund: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    urgency: Mapped[str] = mapped_column(String(10), nullable=False, default="low")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        doc="Entries past this time are misses and swept",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "grant_id", name="uq_grant_match_cache_user_grant"),
        Index("ix_grant_match_cache_grant_id", grant_id),
        Index("ix_grant_match_cache_expires_at", expires_at),
    )

    def __repr__(self) -> str:
        return f"<GrantMatchCache(user_id={self.user_id}, grant_id={self.grant_id}, score={self.match_score})>"
