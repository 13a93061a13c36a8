import json

import pytest

from papergrader.errors import TemplateError
from papergrader.models import GradingTemplate, QuestionType
from papergrader.services.templates import TemplateStore, load_grading_template, parse_grading_template
from papergrader.utils.validation import validate_template

FLAT = [
    {"id": "q1", "x": 0, "y": 0, "w": 100, "h": 50, "type": "single_choice", "correctAnswer": "B", "maxPoints": 5},
    {"id": "q2", "x": 0, "y": 100, "w": 100, "h": 50, "type": "subjective", "correctAnswer": "rubric", "maxPoints": 10},
]


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_parse_flat_list():
    template = parse_grading_template(FLAT)
    assert [r.id for r in template.rois] == ["q1", "q2"]
    assert template.questions[0].type == QuestionType.SINGLE_CHOICE
    assert template.questions[1].max_points == 10
    assert template.total_points == 15


def test_parse_split_format():
    template = parse_grading_template({
        "rois": [{"id": "q1", "x": 1, "y": 2, "w": 3, "h": 4}],
        "questions": [{"id": "q1", "type": "true_false", "correctAnswer": False, "maxPoints": 1}],
    })
    assert template.rois[0].h == 4
    assert template.questions[0].correct_answer == "False"


@pytest.mark.parametrize("data", [
    "not a template",
    [{"id": "q1", "type": "essay", "maxPoints": 1}],
    [{"id": "q1", "type": "subjective", "maxPoints": -1}],
    [{"id": "q1", "x": 0, "y": 0, "w": -5, "h": 10}],
    [42],
])
def test_parse_rejects_malformed_templates(data):
    with pytest.raises(TemplateError):
        parse_grading_template(data)


def test_missing_and_broken_files(tmp_path):
    with pytest.raises(TemplateError):
        load_grading_template(tmp_path / "nope.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(TemplateError):
        load_grading_template(broken)


def test_validate_template_reports_problems():
    template = parse_grading_template([
        {"id": "q1", "x": 0, "y": 0, "w": 100, "h": 100, "type": "single_choice", "correctAnswer": "", "maxPoints": 5},
        {"id": "q2", "x": 50, "y": 50, "w": 100, "h": 100, "type": "subjective", "maxPoints": 0},
        {"id": "q3", "type": "subjective", "maxPoints": 3},
        {"id": "orphan", "x": 500, "y": 500, "w": 10, "h": 10},
    ])
    report = validate_template(template)

    assert not report["valid"]
    assert any("q1" in e and "correct answer" in e for e in report["errors"])
    warnings = " | ".join(report["warnings"])
    assert "q2: maxPoints is 0" in warnings
    assert "q3: No answer region" in warnings
    assert "orphan: Answer region without a question" in warnings
    assert "Regions q1 and q2 overlap" in warnings


def test_validate_template_duplicate_ids():
    template = parse_grading_template(FLAT + [FLAT[0]])
    report = validate_template(template)
    assert "Duplicate question id: q1" in report["errors"]
    assert "Duplicate ROI id: q1" in report["errors"]


def test_empty_template_is_invalid():
    assert not validate_template(GradingTemplate())["valid"]


def test_store_caches_and_shares_template(tmp_path):
    path = _write(tmp_path / "default.json", FLAT)
    store = TemplateStore(default_path=path, template_dir=tmp_path / "templates")

    first = store.for_assignment("a-1")
    assert first is store.for_assignment("a-2")

    _write(path, [])
    assert store.for_assignment() is first


def test_store_prefers_assignment_template(tmp_path):
    default = _write(tmp_path / "default.json", FLAT)
    template_dir = tmp_path / "templates"
    template_dir.mkdir()
    _write(template_dir / "a-1.json", FLAT[:1])
    store = TemplateStore(default_path=default, template_dir=template_dir)

    assert len(store.for_assignment("a-1").questions) == 1
    assert len(store.for_assignment("a-2").questions) == 2


def test_store_refuses_invalid_template(tmp_path):
    path = _write(tmp_path / "default.json", [{"id": "q1", "type": "single_choice", "maxPoints": 1}])
    with pytest.raises(TemplateError):
        TemplateStore(default_path=path, template_dir=None).for_assignment()


def test_store_preload_without_file(tmp_path):
    store = TemplateStore(default_path=tmp_path / "missing.json", template_dir=tmp_path)
    template = parse_grading_template(FLAT)
    store.preload(template, assignment_id="a-9")
    assert store.for_assignment("a-9") is template
    with pytest.raises(TemplateError):
        store.for_assignment("a-1")


def test_bundled_default_template_is_valid():
    store = TemplateStore()
    template = store.for_assignment()
    report = validate_template(template)
    assert report["valid"], report["errors"]
    assert [q.id for q in template.questions] == ["q1", "q2", "q3", "q4"]
