"""Hashing utilities for correlation ids and content deduplication."""

import hashlib
import json
from typing import Iterable


def get_page_hash(image_bytes: bytes) -> str:
    """SHA256 of the raw page bytes."""
    return hashlib.sha256(image_bytes).hexdigest()


def get_page_file_name(image_bytes: bytes, extension: str = "jpg") -> str:
    """Stable upload file name for a page, e.g. page_3f2a9c1b7d4e.jpg"""
    return f"page_{get_page_hash(image_bytes)[:12]}.{extension}"


def get_results_hash(results: Iterable[dict]) -> str:
    """SHA256 over a list of result dicts, used to tell re-grades that changed nothing."""
    return hashlib.sha256(json.dumps(list(results), sort_keys=True, default=str).encode()).hexdigest()
