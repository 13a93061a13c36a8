"""papergrader - automated answer-sheet grading pipeline."""

__version__ = "0.1.0"
