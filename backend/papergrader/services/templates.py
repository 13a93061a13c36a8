"""
Grading template store - question regions and answer keys per paper layout.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import ValidationError

from papergrader.config import logger, GRADING_CONFIG_PATH, GRADING_TEMPLATE_DIR
from papergrader.errors import TemplateError
from papergrader.models import GradingTemplate, QuestionDefinition, QuestionROI
from papergrader.utils.validation import validate_template

_GEOMETRY_KEYS = ("x", "y", "w", "h")


def _split_flat_entries(entries: List[dict]):
    """
    Flat format: every entry may carry both geometry and an answer key, e.g.
    {"id": "q1", "x": 0, "y": 0, "w": 100, "h": 50, "type": "single_choice",
     "correctAnswer": "B", "maxPoints": 5}
    """
    rois, questions = [], []
    for entry in entries:
        if not isinstance(entry, dict):
            raise TemplateError(f"Template entry is not an object: {entry!r}")
        if all(key in entry for key in _GEOMETRY_KEYS):
            rois.append(entry)
        if "type" in entry:
            questions.append(entry)
    return rois, questions


def parse_grading_template(data: Union[list, dict]) -> GradingTemplate:
    """Build a template from either the flat list format or {"rois": [...], "questions": [...]}."""
    if isinstance(data, list):
        raw_rois, raw_questions = _split_flat_entries(data)
    elif isinstance(data, dict):
        raw_rois = data.get("rois") or []
        raw_questions = data.get("questions") or []
    else:
        raise TemplateError("Grading template must be a list or an object")

    try:
        rois = [QuestionROI(**{k: r[k] for k in ("id",) + _GEOMETRY_KEYS}) for r in raw_rois]
        questions = [QuestionDefinition.model_validate(q) for q in raw_questions]
    except (KeyError, ValidationError) as e:
        raise TemplateError(f"Invalid grading template: {e}")

    return GradingTemplate(rois=rois, questions=questions)


def load_grading_template(path: Union[str, Path]) -> GradingTemplate:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise TemplateError(f"Grading template not found: {path}")
    except json.JSONDecodeError as e:
        raise TemplateError(f"Grading template {path} is not valid JSON: {e}")
    return parse_grading_template(data)


class TemplateStore:
    """
    Loads each template file once and hands out the same immutable object to
    every grading run.
    """

    def __init__(self, default_path: Union[str, Path] = GRADING_CONFIG_PATH,
                 template_dir: Optional[Union[str, Path]] = GRADING_TEMPLATE_DIR):
        self.default_path = Path(default_path)
        self.template_dir = Path(template_dir) if template_dir else None
        self._cache: Dict[Path, GradingTemplate] = {}

    def load(self, path: Union[str, Path]) -> GradingTemplate:
        resolved = Path(path).resolve()
        template = self._cache.get(resolved)
        if template is None:
            template = load_grading_template(resolved)
            report = validate_template(template)
            if not report["valid"]:
                raise TemplateError(f"Grading template {resolved} is invalid: {'; '.join(report['errors'])}")
            for warning in report["warnings"]:
                logger.warning(f"[Template] {resolved.name}: {warning}")
            logger.info(
                f"Loaded grading template {resolved.name}: {len(template.rois)} regions, "
                f"{len(template.questions)} questions, {template.total_points} points"
            )
            self._cache[resolved] = template
        return template

    def for_assignment(self, assignment_id: Optional[str] = None) -> GradingTemplate:
        """Per-assignment template if one exists, otherwise the default grading config."""
        if assignment_id and self.template_dir:
            candidate = self.template_dir / f"{assignment_id}.json"
            if candidate.resolve() in self._cache or candidate.exists():
                return self.load(candidate)
        return self.load(self.default_path)

    def preload(self, template: GradingTemplate, assignment_id: Optional[str] = None):
        """Register an in-memory template (used when templates come from a config service)."""
        if assignment_id and self.template_dir:
            key = (self.template_dir / f"{assignment_id}.json").resolve()
        else:
            key = self.default_path.resolve()
        self._cache[key] = template
