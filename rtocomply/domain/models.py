from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Store JSON as JSONB on Postgres while staying portable for SQLite dev/test databases.
JSONType = JSON().with_variant(JSONB(), "postgresql")

DOCUMENT_STATUSES = ("pending", "processing", "completed", "failed")
OPERATION_STATUSES = ("pending", "processing", "completed", "failed", "timeout")
TERMINAL_OPERATION_STATUSES = frozenset({"completed", "failed", "timeout"})
REQUIREMENT_TYPES = (
    "knowledge_evidence",
    "performance_evidence",
    "foundation_skills",
    "elements_performance_criteria",
    "assessment_conditions",
)


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class Rto(Base):
    __tablename__ = "rtos"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # National RTO code; tenants are addressed by code across the API.
    code: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UnitOfCompetency(Base):
    __tablename__ = "units_of_competency"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    unit_code: Mapped[str] = mapped_column(String, unique=True, index=True)
    title: Mapped[str] = mapped_column(String)
    # Public training.gov.au link; summaries are matched on it when present.
    unit_link: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Requirement(Base):
    __tablename__ = "requirements"
    __table_args__ = (Index("ix_requirements_unit_type", "unit_code", "requirement_type"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    unit_code: Mapped[str] = mapped_column(String)
    # One of REQUIREMENT_TYPES.
    requirement_type: Mapped[str] = mapped_column(String)
    # Requirement numbers are dotted strings such as "1.2".
    number: Mapped[str] = mapped_column(String)
    text: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)


class ValidationSummary(Base):
    __tablename__ = "validation_summary"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    unit_code: Mapped[str] = mapped_column(String, index=True)
    unit_link: Mapped[str | None] = mapped_column(String, nullable=True)
    rto_code: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    # Flipped once requirements for the unit are available for matching.
    req_extracted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ValidationType(Base):
    __tablename__ = "validation_types"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    code: Mapped[str] = mapped_column(String, unique=True)
    description: Mapped[str] = mapped_column(String)


class ValidationDetail(Base):
    __tablename__ = "validation_detail"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    summary_id: Mapped[str] = mapped_column(String, ForeignKey("validation_summary.id"), index=True)
    validation_type_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("validation_types.id"), nullable=True
    )
    # Namespace used to scope file search metadata filters for this session.
    namespace_code: Mapped[str | None] = mapped_column(String, nullable=True)
    document_type: Mapped[str] = mapped_column(String, default="unit")
    doc_extracted: Mapped[bool] = mapped_column(Boolean, default=False)
    # Free-form progress label: Uploading, DocumentProcessing, DocumentsUploaded, Failed.
    extract_status: Mapped[str] = mapped_column(String, default="Uploading")
    num_of_req: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    validation_detail_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("validation_detail.id"), index=True, nullable=True
    )
    rto_code: Mapped[str] = mapped_column(String, index=True)
    unit_code: Mapped[str | None] = mapped_column(String, nullable=True)
    document_type: Mapped[str] = mapped_column(String)
    file_name: Mapped[str] = mapped_column(String)
    # Path relative to the storage root.
    storage_path: Mapped[str] = mapped_column(String)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    # One of DOCUMENT_STATUSES; written only by the operations service.
    embedding_status: Mapped[str] = mapped_column(String, default="pending")
    file_search_store_id: Mapped[str | None] = mapped_column(String, nullable=True)
    file_search_document_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class GeminiOperation(Base):
    __tablename__ = "gemini_operations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    document_id: Mapped[str] = mapped_column(String, ForeignKey("documents.id"), index=True)
    validation_detail_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("validation_detail.id"), index=True, nullable=True
    )
    # Provider-assigned long-running operation name; null until indexing starts.
    operation_name: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    operation_type: Mapped[str] = mapped_column(String, default="document_embedding")
    # One of OPERATION_STATUSES; terminal states are never reopened.
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    progress_percentage: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    check_count: Mapped[int] = mapped_column(Integer, default=0)
    last_check_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    elapsed_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_wait_time_ms: Mapped[int] = mapped_column(Integer, default=60000)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ValidationResult(Base):
    __tablename__ = "validation_results"
    __table_args__ = (
        UniqueConstraint(
            "validation_detail_id",
            "requirement_type",
            "requirement_number",
            name="uq_validation_results_requirement",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    validation_detail_id: Mapped[str] = mapped_column(
        String, ForeignKey("validation_detail.id"), index=True
    )
    requirement_type: Mapped[str] = mapped_column(String)
    requirement_number: Mapped[str] = mapped_column(String)
    requirement_text: Mapped[str] = mapped_column(Text)
    # met, partial, or not-met.
    status: Mapped[str] = mapped_column(String)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Variant-specific evidence payload keyed by requirement_type.
    evidence_json: Mapped[dict[str, Any]] = mapped_column("evidence", JSONType, default=dict)
    smart_question: Mapped[str | None] = mapped_column(Text, nullable=True)
    benchmark_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    validation_method: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class _CreditBalanceColumns:
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    rto_code: Mapped[str] = mapped_column(String, unique=True)
    current_credits: Mapped[int] = mapped_column(Integer, default=0)
    # Running allocation figure; grows with grants and is never recomputed from history.
    total_credits: Mapped[int] = mapped_column(Integer, default=0)
    subscription_credits: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class _CreditTransactionColumns:
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    rto_code: Mapped[str] = mapped_column(String, index=True)
    # Signed delta; negative values are consumption.
    amount: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String)
    balance_after: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AiCredits(_CreditBalanceColumns, Base):
    __tablename__ = "ai_credits"


class ValidationCredits(_CreditBalanceColumns, Base):
    __tablename__ = "validation_credits"


class AiCreditTransaction(_CreditTransactionColumns, Base):
    __tablename__ = "ai_credit_transactions"


class CreditTransaction(_CreditTransactionColumns, Base):
    __tablename__ = "credit_transactions"


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Stored uppercased; lookups normalize input the same way.
    code: Mapped[str] = mapped_column(String, unique=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    discount_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Fixed discount in cents.
    discount_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
