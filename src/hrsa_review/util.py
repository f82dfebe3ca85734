from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd


# -----------------------------------------------------------------------------
# Fingerprints
# -----------------------------------------------------------------------------
def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def list_pdfs(dir_path: Path) -> List[str]:
    """Sorted *.pdf file names inside dir (non-recursive, case-insensitive suffix)."""
    p = Path(dir_path)
    if not p.exists() or not p.is_dir():
        return []
    return sorted(x.name for x in p.iterdir() if x.is_file() and x.suffix.lower() == ".pdf")


def timestamp_slug() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")


def text_value(value: Any, default: str) -> str:
    """Reply field as text: lists are joined with spaces, None or blank gives `default`."""
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v).strip() for v in value if v is not None and str(v).strip())
    s = str(value).strip()
    return s or default


def page_location(value: Any, default: str) -> str:
    """Evidence location as text; a bare page number becomes "Page N"."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    s = text_value(value, default)
    return f"Page {s}" if s.isdigit() else s


# -----------------------------------------------------------------------------
# Strict JSON sanitization (NaN/Infinity -> None)
# -----------------------------------------------------------------------------
def _is_nan_like(x: Any) -> bool:
    if isinstance(x, float):
        return not math.isfinite(x)

    # pandas NA / NaT / numpy.nan from spreadsheet cells
    try:
        return bool(pd.isna(x))
    except (TypeError, ValueError):
        return False


def sanitize_json(obj: Any) -> Any:
    """
    Recursively convert objects into JSON-safe structures:
    - NaN/Inf/pd.NA -> None
    - Path -> str
    - tuples/sets -> lists
    - dict keys -> str
    """
    if obj is None:
        return None

    if isinstance(obj, (str, bool, int)):
        return obj

    if isinstance(obj, (list, tuple, set)):
        return [sanitize_json(x) for x in obj]

    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[k if isinstance(k, str) else str(k)] = sanitize_json(v)
        return out

    if _is_nan_like(obj):
        return None

    if isinstance(obj, float):
        return obj

    if isinstance(obj, Path):
        return str(obj)

    if isinstance(obj, (bytes, bytearray)):
        return obj.decode("utf-8", errors="replace")

    # numpy scalars
    item = getattr(obj, "item", None)
    if callable(item) and type(obj).__module__ == "numpy":
        try:
            return sanitize_json(item())
        except (TypeError, ValueError):
            pass

    # Timestamps and the like
    return str(obj)


def write_json(path: Union[Path, str], payload: Any) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    clean = sanitize_json(payload)
    p.write_text(json.dumps(clean, indent=2, ensure_ascii=False, allow_nan=False), encoding="utf-8")
    return p


def read_json(path: Union[Path, str]) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))
