"""Pydantic models for the Craftnet marketplace.

Rows come back from Supabase as dicts; each model ignores columns it does
not declare. All monetary values are NGN and use Decimal.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class JobStatus(str, Enum):
    """Job request lifecycle states."""

    open = "open"
    in_progress = "in_progress"
    pending_review = "pending_review"
    completed = "completed"


class ApplicationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class TransactionType(str, Enum):
    """Escrow-related wallet transaction types."""

    escrow_hold = "escrow_hold"
    escrow_release = "escrow_release"
    escrow_refund = "escrow_refund"


class UpdateStatus(str, Enum):
    """Review state of job updates and progress updates."""

    pending = "pending"
    pending_review = "pending_review"
    approved = "approved"
    needs_changes = "needs_changes"
    acknowledged = "acknowledged"


class FinalSubmissionStatus(str, Enum):
    pending = "pending"
    pending_review = "pending_review"
    approved = "approved"
    needs_revision = "needs_revision"
    disputed = "disputed"


class DisputeStatus(str, Enum):
    open = "open"
    resolved = "resolved"
    closed = "closed"


class DisputeResolution(str, Enum):
    favor_member = "favor_member"
    favor_apprentice = "favor_apprentice"


class UserRole(str, Enum):
    member = "member"
    apprentice = "apprentice"
    admin = "admin"


FeedbackType = Literal["approve", "needs_changes", "request_revision", "dispute", "remark", "comment"]


# =============================================================================
# Rows
# =============================================================================


class Profile(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None
    role: str = UserRole.member.value
    skill: str | None = None
    creative_type: str | None = None
    location: str | None = None
    subscription_plan: str | None = None
    total_earnings: Decimal = Decimal("0")
    completed_jobs: int = 0
    created_at: datetime | None = None

    @field_validator("total_earnings", mode="before")
    @classmethod
    def _null_earnings(cls, v):
        return Decimal("0") if v is None else v

    @field_validator("completed_jobs", mode="before")
    @classmethod
    def _null_jobs(cls, v):
        return 0 if v is None else v


class Wallet(BaseModel):
    """A user's NGN wallet."""

    id: str | None = None
    user_id: str
    balance_ngn: Decimal = Decimal("0")
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("balance_ngn", mode="before")
    @classmethod
    def _null_balance(cls, v):
        return Decimal("0") if v is None else v


class WalletTransaction(BaseModel):
    """Append-only ledger entry. ``amount_ngn`` is signed."""

    id: str | None = None
    user_id: str
    transaction_type: TransactionType
    amount_ngn: Decimal
    reference: str
    description: str | None = None
    status: str = "completed"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class JobRequest(BaseModel):
    id: str
    client_id: str
    assigned_apprentice_id: str | None = None
    title: str
    description: str | None = None
    fixed_price: Decimal | None = None
    budget_min: Decimal | None = None
    budget_max: Decimal | None = None
    escrow_amount: Decimal | None = None
    skills_required: list[str] = Field(default_factory=list)
    location: str | None = None
    deadline: datetime | None = None
    status: JobStatus = JobStatus.open
    progress: int | None = None
    review_approved: bool | None = None
    review_notes: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    review_submitted_at: datetime | None = None

    @field_validator("skills_required", mode="before")
    @classmethod
    def _null_skills(cls, v):
        return [] if v is None else v

    def held_amount(self) -> Decimal:
        """Escrow held for this job, falling back through legacy pricing columns."""
        if self.escrow_amount is not None:
            return self.escrow_amount
        if self.fixed_price is not None:
            return self.fixed_price
        if self.budget_max is not None:
            return self.budget_max
        if self.budget_min is not None:
            return self.budget_min
        return Decimal("0")


class JobApplication(BaseModel):
    id: str
    job_request_id: str
    apprentice_id: str
    proposal: str | None = None
    cv_url: str | None = None
    status: ApplicationStatus = ApplicationStatus.pending
    created_at: datetime | None = None


class JobUpdate(BaseModel):
    id: str
    job_request_id: str
    apprentice_id: str
    title: str | None = None
    description: str | None = None
    update_type: str = "progress"
    version_number: int
    file_urls: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    status: UpdateStatus = UpdateStatus.pending_review
    created_at: datetime | None = None


class ProgressUpdate(BaseModel):
    id: str
    job_request_id: str
    apprentice_id: str
    title: str | None = None
    description: str | None = None
    version_number: int
    file_url: str | None = None
    file_type: str | None = None
    link_url: str | None = None
    status: UpdateStatus = UpdateStatus.pending
    acknowledged_at: datetime | None = None
    created_at: datetime | None = None


class FinalSubmission(BaseModel):
    id: str
    job_request_id: str
    apprentice_id: str
    title: str | None = None
    description: str | None = None
    file_urls: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    status: FinalSubmissionStatus = FinalSubmissionStatus.pending_review
    review_notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime | None = None


class Dispute(BaseModel):
    id: str
    job_id: str
    member_id: str
    apprentice_id: str | None = None
    raised_by: str
    type: str = "payment"
    status: DisputeStatus = DisputeStatus.open
    resolution: DisputeResolution | None = None
    description: str | None = None
    evidence: list[str] = Field(default_factory=list)
    amount: Decimal = Decimal("0")
    admin_notes: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime | None = None

    @field_validator("evidence", mode="before")
    @classmethod
    def parse_evidence(cls, v):
        # Stored as a JSON-encoded list of storage references
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def _null_amount(cls, v):
        return Decimal("0") if v is None else v


class Rating(BaseModel):
    id: str
    job_request_id: str
    rater_id: str
    ratee_id: str
    rating: int
    comment: str | None = None
    created_at: datetime | None = None


# =============================================================================
# Inputs
# =============================================================================


class JobRequestCreate(BaseModel):
    """Request to post a job. Price bounds are checked by the workflow."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    fixed_price: Decimal
    skills_required: list[str] = Field(default_factory=list)
    location: str | None = None
    deadline: datetime | None = None

    @field_validator("skills_required")
    @classmethod
    def validate_skills(cls, v: list[str]) -> list[str]:
        return [s.strip() for s in v if s.strip()]


class JobFilters(BaseModel):
    skills: list[str] = Field(default_factory=list)
    location: str | None = None
    min_budget: Decimal | None = None
    max_budget: Decimal | None = None
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)


class JobUpdateCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    update_type: str = "progress"
    file_urls: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)


class ProgressUpdateCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    file_url: str | None = None
    file_type: str | None = None
    link_url: str | None = None


class FeedbackCreate(BaseModel):
    feedback_type: FeedbackType
    remarks: str | None = None


class FinalWorkCreate(BaseModel):
    job_request_id: str
    title: str = Field(..., min_length=1)
    description: str = ""
    file_urls: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)


class DisputeCreate(BaseModel):
    type: str = "payment"
    description: str = Field(..., min_length=1)


class EvidenceFile(BaseModel):
    """An uploaded evidence attachment, already read into memory."""

    filename: str
    content: bytes
    content_type: str | None = None


# =============================================================================
# Results
# =============================================================================


class LedgerResult(BaseModel):
    """Outcome of a single ledger movement."""

    balance: Decimal
    transaction: WalletTransaction | None = None
    skipped: bool = False


class ReviewResult(BaseModel):
    job: JobRequest
    payment: Decimal | None = None
    refund: Decimal | None = None
    skipped: bool = False


class DeletionResult(BaseModel):
    deleted: bool
    already_deleted: bool = False
    refunded: bool = False
    refund_amount: Decimal = Decimal("0")


class FinalFeedbackResult(BaseModel):
    submission_status: str
    payout: dict[str, Any] | None = None
    payout_skipped: bool = False
