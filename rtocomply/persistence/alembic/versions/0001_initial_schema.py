"""initial schema: catalog, validation sessions, documents, indexing operations, credits

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        )
    return columns


def _credit_balance_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("rto_code", sa.String(), nullable=False, unique=True),
        sa.Column("current_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("subscription_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )


def _credit_transaction_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("rto_code", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index(f"ix_{name}_rto_code", name, ["rto_code"])


def upgrade() -> None:
    # Catalog tables are read-mostly reference data.
    op.create_table(
        "rtos",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        *_timestamps(updated=False),
    )
    op.create_index("ix_rtos_code", "rtos", ["code"], unique=True)

    op.create_table(
        "units_of_competency",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("unit_code", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("unit_link", sa.String(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_units_of_competency_unit_code", "units_of_competency", ["unit_code"], unique=True)

    op.create_table(
        "requirements",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("unit_code", sa.String(), nullable=False),
        sa.Column("requirement_type", sa.String(), nullable=False),
        sa.Column("number", sa.String(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
    )
    op.create_index("ix_requirements_unit_type", "requirements", ["unit_code", "requirement_type"])

    op.create_table(
        "validation_summary",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("unit_code", sa.String(), nullable=False),
        sa.Column("unit_link", sa.String(), nullable=True),
        sa.Column("rto_code", sa.String(), nullable=True),
        sa.Column("req_extracted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_validation_summary_unit_code", "validation_summary", ["unit_code"])
    op.create_index("ix_validation_summary_rto_code", "validation_summary", ["rto_code"])

    op.create_table(
        "validation_types",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.String(), nullable=False),
    )

    op.create_table(
        "validation_detail",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("summary_id", sa.String(), sa.ForeignKey("validation_summary.id"), nullable=False),
        sa.Column("validation_type_id", sa.String(), sa.ForeignKey("validation_types.id"), nullable=True),
        sa.Column("namespace_code", sa.String(), nullable=True),
        sa.Column("document_type", sa.String(), nullable=False, server_default="unit"),
        sa.Column("doc_extracted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("extract_status", sa.String(), nullable=False, server_default="Uploading"),
        sa.Column("num_of_req", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_validation_detail_summary_id", "validation_detail", ["summary_id"])

    # Documents and their indexing operations drive the session stage.
    op.create_table(
        "documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("validation_detail_id", sa.String(), sa.ForeignKey("validation_detail.id"), nullable=True),
        sa.Column("rto_code", sa.String(), nullable=False),
        sa.Column("unit_code", sa.String(), nullable=True),
        sa.Column("document_type", sa.String(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("embedding_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("file_search_store_id", sa.String(), nullable=True),
        sa.Column("file_search_document_id", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_documents_validation_detail_id", "documents", ["validation_detail_id"])
    op.create_index("ix_documents_rto_code", "documents", ["rto_code"])

    op.create_table(
        "gemini_operations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("document_id", sa.String(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("validation_detail_id", sa.String(), sa.ForeignKey("validation_detail.id"), nullable=True),
        sa.Column("operation_name", sa.String(), nullable=True),
        sa.Column("operation_type", sa.String(), nullable=False, server_default="document_embedding"),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("progress_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("check_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("elapsed_time_ms", sa.Integer(), nullable=True),
        sa.Column("max_wait_time_ms", sa.Integer(), nullable=False, server_default="60000"),
        *_timestamps(),
    )
    op.create_index("ix_gemini_operations_document_id", "gemini_operations", ["document_id"])
    op.create_index("ix_gemini_operations_validation_detail_id", "gemini_operations", ["validation_detail_id"])
    op.create_index("ix_gemini_operations_operation_name", "gemini_operations", ["operation_name"])
    op.create_index("ix_gemini_operations_status", "gemini_operations", ["status"])

    op.create_table(
        "validation_results",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("validation_detail_id", sa.String(), sa.ForeignKey("validation_detail.id"), nullable=False),
        sa.Column("requirement_type", sa.String(), nullable=False),
        sa.Column("requirement_number", sa.String(), nullable=False),
        sa.Column("requirement_text", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("evidence", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("smart_question", sa.Text(), nullable=True),
        sa.Column("benchmark_answer", sa.Text(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("validation_method", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "validation_detail_id",
            "requirement_type",
            "requirement_number",
            name="uq_validation_results_requirement",
        ),
    )
    op.create_index("ix_validation_results_validation_detail_id", "validation_results", ["validation_detail_id"])

    # Credit balances are keyed by RTO code; transactions keep the signed history.
    _credit_balance_table("ai_credits")
    _credit_balance_table("validation_credits")
    _credit_transaction_table("ai_credit_transactions")
    _credit_transaction_table("credit_transactions")

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("discount_percent", sa.Integer(), nullable=True),
        sa.Column("discount_amount", sa.Integer(), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )


def downgrade() -> None:
    op.drop_table("promo_codes")
    op.drop_index("ix_credit_transactions_rto_code", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_index("ix_ai_credit_transactions_rto_code", table_name="ai_credit_transactions")
    op.drop_table("ai_credit_transactions")
    op.drop_table("validation_credits")
    op.drop_table("ai_credits")
    op.drop_index("ix_validation_results_validation_detail_id", table_name="validation_results")
    op.drop_table("validation_results")
    op.drop_index("ix_gemini_operations_status", table_name="gemini_operations")
    op.drop_index("ix_gemini_operations_operation_name", table_name="gemini_operations")
    op.drop_index("ix_gemini_operations_validation_detail_id", table_name="gemini_operations")
    op.drop_index("ix_gemini_operations_document_id", table_name="gemini_operations")
    op.drop_table("gemini_operations")
    op.drop_index("ix_documents_rto_code", table_name="documents")
    op.drop_index("ix_documents_validation_detail_id", table_name="documents")
    op.drop_table("documents")
    op.drop_index("ix_validation_detail_summary_id", table_name="validation_detail")
    op.drop_table("validation_detail")
    op.drop_table("validation_types")
    op.drop_index("ix_validation_summary_rto_code", table_name="validation_summary")
    op.drop_index("ix_validation_summary_unit_code", table_name="validation_summary")
    op.drop_table("validation_summary")
    op.drop_index("ix_requirements_unit_type", table_name="requirements")
    op.drop_table("requirements")
    op.drop_index("ix_units_of_competency_unit_code", table_name="units_of_competency")
    op.drop_table("units_of_competency")
    op.drop_index("ix_rtos_code", table_name="rtos")
    op.drop_table("rtos")
