from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


ValidationStage = Literal["pending", "requirements", "documents", "validated"]

STAGE_ORDER: tuple[ValidationStage, ...] = ("pending", "requirements", "documents", "validated")

_STAGE_COPY: dict[str, tuple[str, str]] = {
    "pending": ("Pending", "Validation created, waiting for requirements"),
    "requirements": ("Requirements", "Requirements extracted, processing documents"),
    "documents": ("Documents", "Documents indexed, validating requirements"),
    "validated": ("Validated", "All requirements validated"),
}


@dataclass(frozen=True)
class WorkflowStep:
    key: ValidationStage
    label: str
    description: str
    is_current: bool
    is_complete: bool


def derive_stage(
    doc_extracted: bool,
    req_extracted: bool,
    completed_count: int,
    total_requirements: int,
    extract_status: str | None = None,
) -> ValidationStage:
    """Derive the workflow stage of a validation session from its current counts.

    The stage is recomputed on every read and never stored, so out-of-order
    updates to the underlying flags are reflected as soon as they land.
    """
    if total_requirements > 0 and completed_count >= total_requirements:
        return "validated"
    if doc_extracted:
        return "documents"
    if req_extracted or extract_status == "DocumentProcessing":
        return "requirements"
    return "pending"


def workflow_steps(stage: ValidationStage) -> list[WorkflowStep]:
    current_index = STAGE_ORDER.index(stage)
    steps: list[WorkflowStep] = []
    for index, key in enumerate(STAGE_ORDER):
        label, description = _STAGE_COPY[key]
        steps.append(
            WorkflowStep(
                key=key,
                label=label,
                description=description,
                is_current=index == current_index,
                # The final stage counts as complete once reached.
                is_complete=index < current_index or (index == current_index == len(STAGE_ORDER) - 1),
            )
        )
    return steps
