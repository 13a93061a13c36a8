import pytest

from papergrader.models import OcrSpan, QuestionROI
from papergrader.services.attribution import attribute_spans, find_roi, group_spans


def _span(content, x1, y1, x2, y2):
    return OcrSpan(content=content, bbox=[x1, y1, x2, y2])


def test_span_inside_roi_is_attributed():
    rois = [QuestionROI(id="q1", x=0, y=0, w=100, h=50)]
    answers = attribute_spans([_span("B", 10, 10, 30, 30)], rois)
    assert answers == {"q1": "B"}


def test_every_roi_present_even_without_spans():
    rois = [
        QuestionROI(id="q1", x=0, y=0, w=100, h=50),
        QuestionROI(id="q2", x=0, y=100, w=100, h=50),
    ]
    answers = attribute_spans([_span("A", 10, 10, 20, 20)], rois)
    assert answers == {"q1": "A", "q2": ""}


def test_span_between_regions_is_discarded():
    rois = [
        QuestionROI(id="q1", x=0, y=0, w=100, h=50),
        QuestionROI(id="q2", x=0, y=100, w=100, h=50),
    ]
    # center (50, 75) lies in the gap
    answers = attribute_spans([_span("stray", 40, 70, 60, 80)], rois)
    assert answers == {"q1": "", "q2": ""}


def test_center_on_border_belongs_to_roi():
    rois = [QuestionROI(id="q1", x=0, y=0, w=100, h=50)]
    # center (100, 50) is the bottom-right corner
    assert find_roi(_span("edge", 90, 40, 110, 60), rois).id == "q1"


def test_overlap_goes_to_first_configured_roi():
    first = QuestionROI(id="q1", x=0, y=0, w=100, h=100)
    second = QuestionROI(id="q2", x=50, y=50, w=100, h=100)
    span = _span("X", 70, 70, 80, 80)

    assert attribute_spans([span], [first, second]) == {"q1": "X", "q2": ""}
    assert attribute_spans([span], [second, first]) == {"q2": "X", "q1": ""}


def test_reading_order_is_top_then_left():
    rois = [QuestionROI(id="q3", x=0, y=0, w=1000, h=300)]
    spans = [
        _span("energy", 300, 100, 400, 130),
        _span("chemical", 100, 100, 250, 130),
        _span("converts", 300, 10, 400, 40),
        _span("Photosynthesis", 10, 10, 250, 40),
        _span("into", 10, 100, 80, 130),
    ]
    answers = attribute_spans(spans, rois)
    assert answers["q3"] == "Photosynthesis converts into chemical energy"


def test_attribution_is_deterministic_for_shuffled_input():
    rois = [QuestionROI(id="q1", x=0, y=0, w=500, h=200)]
    spans = [_span(f"w{i}", 10 + 50 * (i % 4), 10 + 40 * (i // 4), 50 + 50 * (i % 4), 40 + 40 * (i // 4))
             for i in range(12)]
    expected = attribute_spans(spans, rois)
    assert attribute_spans(list(reversed(spans)), rois) == expected
    assert attribute_spans(spans[5:] + spans[:5], rois) == expected


def test_group_spans_keeps_ocr_order_for_identical_positions():
    rois = [QuestionROI(id="q1", x=0, y=0, w=100, h=100)]
    a = _span("first", 10, 10, 20, 20)
    b = _span("second", 10, 10, 20, 20)
    assert [s.content for s in group_spans([a, b], rois)["q1"]] == ["first", "second"]


def test_no_rois_means_empty_mapping():
    assert attribute_spans([_span("A", 0, 0, 10, 10)], []) == {}


def test_roi_rejects_non_positive_extent():
    with pytest.raises(ValueError):
        QuestionROI(id="q1", x=0, y=0, w=0, h=10)


def test_span_bbox_needs_four_numbers():
    with pytest.raises(ValueError):
        OcrSpan(content="A", bbox=[0, 0, 10])
