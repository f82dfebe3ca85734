from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

from jsonschema import Draft202012Validator

from .errors import MalformedResponse, ReviewError
from .util import sanitize_json

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"

VALIDATION_RESPONSE_SCHEMA = SCHEMA_DIR / "validation_response.schema.json"
CHAPTER_RESPONSE_SCHEMA = SCHEMA_DIR / "chapter_response.schema.json"
APPLICATION_RESULT_SCHEMA = SCHEMA_DIR / "application_result.schema.json"


class SchemaValidationError(ReviewError):
    pass


@lru_cache(maxsize=None)
def _validator(schema_path: Path) -> Draft202012Validator:
    if not schema_path.exists():
        raise SchemaValidationError(f"Schema file not found: {schema_path}")
    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


def schema_errors(data: Any, schema_path: Path, limit: int = 25) -> List[str]:
    validator = _validator(Path(schema_path))
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    lines: List[str] = []
    for e in errors[:limit]:
        path = "$"
        for p in e.path:
            path += f"[{p!r}]" if isinstance(p, int) else f".{p}"
        lines.append(f"- {path}: {e.message}")
    if len(errors) > limit:
        lines.append(f"... and {len(errors) - limit} more errors")
    return lines


def check_reply_shape(data: Any, raw: str = "", schema_path: Optional[Path] = None) -> None:
    """Raise MalformedResponse when a decoded LLM reply lacks the expected shape."""
    lines = schema_errors(data, schema_path or VALIDATION_RESPONSE_SCHEMA)
    if lines:
        raise MalformedResponse("LLM reply does not match expected shape:\n" + "\n".join(lines), raw)


def validate_application_result(data: Any, schema_path: Optional[Path] = None) -> None:
    if hasattr(data, "to_dict") and callable(getattr(data, "to_dict")):
        data = data.to_dict()
    elif is_dataclass(data):
        data = asdict(data)
    data = sanitize_json(data)

    lines = schema_errors(data, schema_path or APPLICATION_RESULT_SCHEMA)
    if lines:
        raise SchemaValidationError("Application result JSON does not match schema:\n" + "\n".join(lines))
