"""
Spatial attribution - assigns OCR spans to question regions and rebuilds
reading order inside each region.
"""

from typing import Dict, List, Sequence

from papergrader.config import logger
from papergrader.models import OcrSpan, QuestionROI


def find_roi(span: OcrSpan, rois: Sequence[QuestionROI]):
    """First ROI (configuration order) containing the span center, or None."""
    cx, cy = span.center
    for roi in rois:
        if roi.contains(cx, cy):
            return roi
    return None


def group_spans(spans: Sequence[OcrSpan], rois: Sequence[QuestionROI]) -> Dict[str, List[OcrSpan]]:
    """
    Group spans by question id, each group sorted top line first, then left to
    right. Every ROI id is present; spans outside all ROIs are dropped.
    """
    groups: Dict[str, List[OcrSpan]] = {roi.id: [] for roi in rois}
    discarded = 0
    for span in spans:
        roi = find_roi(span, rois)
        if roi is None:
            discarded += 1
            continue
        groups[roi.id].append(span)

    for question_id, members in groups.items():
        # sorted() is stable, equal (y_min, x_min) keep OCR order
        groups[question_id] = sorted(members, key=lambda s: (s.bbox[1], s.bbox[0]))

    if discarded:
        logger.debug(f"[Attribution] {discarded} of {len(spans)} spans outside every answer region")
    return groups


def attribute_spans(spans: Sequence[OcrSpan], rois: Sequence[QuestionROI]) -> Dict[str, str]:
    """Map every question id to its reconstructed answer text ("" = unanswered)."""
    groups = group_spans(spans, rois)
    answers = {
        question_id: " ".join(s.content for s in members)
        for question_id, members in groups.items()
    }
    answered = sum(1 for text in answers.values() if text)
    logger.info(f"[Attribution] {answered}/{len(answers)} questions have text from {len(spans)} spans")
    return answers
