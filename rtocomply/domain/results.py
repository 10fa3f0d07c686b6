from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from rtocomply.domain.models import ValidationResult


ResultStatus = Literal["met", "partial", "not-met"]

# Workflow engines emit both spellings; rows always store the hyphenated form.
_STATUS_ALIASES = {"not_met": "not-met", "notmet": "not-met", "partially_met": "partial"}


class Citation(BaseModel):
    model_config = {"extra": "forbid"}

    document_name: str
    page_numbers: list[int] = Field(default_factory=list)
    chunk_text: str | None = None


class DocReference(BaseModel):
    model_config = {"extra": "forbid"}

    document_name: str
    section: str | None = None
    page_numbers: list[int] = Field(default_factory=list)


class _ResultBase(BaseModel):
    model_config = {"extra": "forbid"}

    requirement_number: str
    requirement_text: str
    status: ResultStatus
    reasoning: str | None = None
    smart_question: str | None = None
    benchmark_answer: str | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _STATUS_ALIASES.get(lowered, lowered)
        return value


class KnowledgeEvidenceResult(_ResultBase):
    requirement_type: Literal["knowledge_evidence"] = "knowledge_evidence"
    citations: list[Citation] = Field(default_factory=list)


class PerformanceEvidenceResult(_ResultBase):
    requirement_type: Literal["performance_evidence"] = "performance_evidence"
    citations: list[Citation] = Field(default_factory=list)
    # Assessment tasks observed to cover the performance requirement.
    tasks: list[str] = Field(default_factory=list)


class FoundationSkillsResult(_ResultBase):
    requirement_type: Literal["foundation_skills"] = "foundation_skills"
    citations: list[Citation] = Field(default_factory=list)


class ElementCriteriaResult(_ResultBase):
    requirement_type: Literal["elements_performance_criteria"] = "elements_performance_criteria"
    element: str | None = None
    doc_references: list[DocReference] = Field(default_factory=list)


class AssessmentConditionsResult(_ResultBase):
    requirement_type: Literal["assessment_conditions"] = "assessment_conditions"
    doc_references: list[DocReference] = Field(default_factory=list)


RequirementResult = Annotated[
    Union[
        KnowledgeEvidenceResult,
        PerformanceEvidenceResult,
        FoundationSkillsResult,
        ElementCriteriaResult,
        AssessmentConditionsResult,
    ],
    Field(discriminator="requirement_type"),
]

_result_adapter: TypeAdapter[RequirementResult] = TypeAdapter(RequirementResult)

_COMMON_FIELDS = set(_ResultBase.model_fields) | {"requirement_type"}


def parse_result(payload: dict[str, Any]) -> RequirementResult:
    return _result_adapter.validate_python(payload)


def result_to_row_values(result: RequirementResult) -> dict[str, Any]:
    # Split common columns from the variant-specific evidence payload.
    data = result.model_dump(mode="json")
    evidence = {key: value for key, value in data.items() if key not in _COMMON_FIELDS}
    return {
        "requirement_type": result.requirement_type,
        "requirement_number": result.requirement_number,
        "requirement_text": result.requirement_text,
        "status": result.status,
        "reasoning": result.reasoning,
        "smart_question": result.smart_question,
        "benchmark_answer": result.benchmark_answer,
        "confidence_score": result.confidence_score,
        "evidence_json": evidence,
    }


def result_from_row(row: ValidationResult) -> RequirementResult:
    payload: dict[str, Any] = dict(row.evidence_json or {})
    payload.update(
        requirement_type=row.requirement_type,
        requirement_number=row.requirement_number,
        requirement_text=row.requirement_text,
        status=row.status,
        reasoning=row.reasoning,
        smart_question=row.smart_question,
        benchmark_answer=row.benchmark_answer,
        confidence_score=row.confidence_score,
    )
    return parse_result(payload)
