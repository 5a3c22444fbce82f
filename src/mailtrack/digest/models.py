"""Pydantic v2 models for the daily digest and its collaborator-sourced items."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from mailtrack.domain.types import Priority


class ExpiringObligation(BaseModel):
    """A tariff (or similar obligation) approaching its expiry date."""

    model_config = ConfigDict(frozen=True)

    id: str
    reference: str = ""
    customer_name: str | None = None
    carrier_name: str | None = None
    expiry_date: datetime
    days_until_expiry: int


class StalledPipelineItem(BaseModel):
    """A pipeline record with no update for several days."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    stage: str = ""
    customer_name: str | None = None
    updated_at: datetime
    days_idle: int


class PendingReviewItem(BaseModel):
    """A document waiting for approval."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    created_at: datetime


class ActionItem(BaseModel):
    """One prioritized entry in a digest's action list."""

    model_config = ConfigDict(frozen=True)

    priority: Priority
    type: str
    message: str
    action: str


class PriorityCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    high: int = 0
    medium: int = 0
    low: int = 0


class DigestSummary(BaseModel):
    """Counts of action items by priority at generation time."""

    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    total_items: int
    priorities: PriorityCounts


class Digest(BaseModel):
    """One user's action summary for one calendar day."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    user_id: str
    digest_date: date
    summary: DigestSummary
    expiring: list[ExpiringObligation] = Field(default_factory=list)
    stalled: list[StalledPipelineItem] = Field(default_factory=list)
    pending_review: list[PendingReviewItem] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)


class ActiveUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str = ""
    email: str = ""


class DigestSweepResult(BaseModel):
    """Outcome of generating digests for every active user."""

    model_config = ConfigDict(frozen=True)

    users_processed: int
    digests_created: int
    failed_user_ids: list[str] = Field(default_factory=list)
