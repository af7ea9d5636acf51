"""Helpers to load the bundled JSON schemas and validate API payloads."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

WORK_ORDERS_PAGE = "work_orders_page"
SUMMARY = "summary"


def schemas_dir() -> Path:
    """Directory holding the JSON schemas shipped with the package."""
    return Path(__file__).resolve().parent / "schemas"


@lru_cache(maxsize=None)
def load_schema(name: str) -> Dict[str, Any]:
    """Load and cache one bundled schema by its file stem."""
    path = schemas_dir() / f"{name}.json"
    return json.loads(path.read_text(encoding="utf-8"))


def format_errors(errors: Iterable[ValidationError]) -> str:
    """Turn jsonschema errors into a concise human-readable string."""
    parts = []
    for err in errors:
        location = ".".join(str(piece) for piece in err.absolute_path) or "<root>"
        parts.append(f"{location}: {err.message}")
    return "; ".join(parts)


def validate_payload(name: str, payload: Any) -> Any:
    """
    Validate a decoded JSON payload against a bundled schema.

    Raises ValueError with a readable message if validation fails.
    """
    validator = Draft202012Validator(load_schema(name))
    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.absolute_path])
    if errors:
        raise ValueError(f"{name} payload failed validation: {format_errors(errors)}")
    return payload


def is_valid(name: str, payload: Any) -> bool:
    return Draft202012Validator(load_schema(name)).is_valid(payload)
