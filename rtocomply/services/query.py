from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.core.errors import ProviderConfigError, ProviderError, RequestValidationError
from rtocomply.providers.file_search.base import FileSearchProvider, GroundingCitation
from rtocomply.services.credits import CreditLedger
from rtocomply.services.operations import store_display_name


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryAnswer:
    answer: str
    store_name: str
    metadata_filter: str | None
    citations: list[GroundingCitation] = field(default_factory=list)


def build_metadata_filter(*, unit_code: str | None, document_type: str | None) -> str | None:
    # File search filters use AIP-160 syntax over the hyphenated upload metadata keys.
    clauses: list[str] = []
    if unit_code:
        clauses.append(f'unit-code = "{unit_code}"')
    if document_type:
        clauses.append(f'document-type = "{document_type}"')
    return " AND ".join(clauses) or None


async def query_documents(
    session: AsyncSession,
    *,
    provider: FileSearchProvider,
    ledger: CreditLedger,
    rto_code: str,
    question: str,
    unit_code: str | None = None,
    document_type: str | None = None,
) -> QueryAnswer:
    """Answer a question grounded in the RTO's indexed documents.

    Costs one AI credit; the credit is refunded when the provider fails.
    """
    if not rto_code or not question or not question.strip():
        raise RequestValidationError("rto_code and question are required")
    await ledger.consume(session, kind="ai", rto_code=rto_code, reason="query_document")
    metadata_filter = build_metadata_filter(unit_code=unit_code, document_type=document_type)
    try:
        store_name = await provider.get_or_create_store(store_display_name(rto_code))
        result = await provider.generate_content(
            prompt=question.strip(), store_names=[store_name], metadata_filter=metadata_filter
        )
    except (ProviderError, ProviderConfigError):
        await ledger.refund(session, kind="ai", rto_code=rto_code, reason="refund:query_document")
        raise
    logger.info("query_document_answered rto_code=%s citations=%s", rto_code, len(result.citations))
    return QueryAnswer(
        answer=result.text,
        store_name=store_name,
        metadata_filter=metadata_filter,
        citations=result.citations,
    )
