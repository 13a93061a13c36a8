"""Validation utilities for grading templates."""

from typing import Any, Dict

from papergrader.models import GradingTemplate


def validate_template(template: GradingTemplate) -> Dict[str, Any]:
    """
    Validate a grading template for consistency.
    Returns validation result with warnings/errors.
    """
    warnings = []
    errors = []

    if not template.questions:
        errors.append("No questions defined")
        return {"valid": False, "errors": errors, "warnings": warnings}

    roi_ids = set()
    for roi in template.rois:
        if roi.id in roi_ids:
            errors.append(f"Duplicate ROI id: {roi.id}")
        roi_ids.add(roi.id)

    question_ids = set()
    for q in template.questions:
        if q.id in question_ids:
            errors.append(f"Duplicate question id: {q.id}")
        question_ids.add(q.id)

        if q.id not in roi_ids:
            warnings.append(f"{q.id}: No answer region, will always be graded as unanswered")
        if q.type.is_objective and not q.correct_answer.strip():
            errors.append(f"{q.id}: Objective question without a correct answer")
        if q.max_points == 0:
            warnings.append(f"{q.id}: maxPoints is 0")

    for roi_id in sorted(roi_ids - question_ids):
        warnings.append(f"{roi_id}: Answer region without a question definition")

    rois = template.rois
    for i, first in enumerate(rois):
        for second in rois[i + 1:]:
            if first.overlaps(second):
                warnings.append(
                    f"Regions {first.id} and {second.id} overlap; spans in the overlap go to {first.id}"
                )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "total_points": template.total_points,
    }
