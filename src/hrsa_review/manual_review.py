from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .models import ManualReviewEntry
from .util import read_json


def read_excel_first_sheet(path: Path) -> pd.DataFrame:
    return pd.read_excel(path, sheet_name=0, engine="openpyxl")


def _cell_text(v: Any) -> str:
    if v is None:
        return ""
    try:
        if pd.isna(v):
            return ""
    except (TypeError, ValueError):
        pass
    # tracking numbers come back as 242645.0 when the column has blanks
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v).strip()


def entries_from_frame(df: pd.DataFrame) -> Dict[str, List[ManualReviewEntry]]:
    """
    Rows of a project-officer answer sheet grouped by tracking number.

    Columns are taken by position: tracking number, question (the element
    label as the reviewer wrote it), answer, comment. Rows without a
    tracking number or question are skipped.
    """
    if df.shape[1] < 3:
        raise ValueError(f"Manual review sheet needs at least 3 columns (tracking number, question, answer), got {df.shape[1]}")

    out: Dict[str, List[ManualReviewEntry]] = {}
    skipped = 0
    for row in df.itertuples(index=False, name=None):
        app = _cell_text(row[0])
        question = _cell_text(row[1])
        if not app or not question:
            skipped += 1
            continue
        comment = _cell_text(row[3]) if len(row) > 3 else ""
        out.setdefault(app, []).append(
            ManualReviewEntry(
                element_label=question,
                raw_status_text=_cell_text(row[2]),
                section=None,
                comments=comment or None,
            )
        )
    if skipped:
        logging.info("Skipped %d manual review rows without tracking number or question", skipped)
    return out


def load_manual_workbook(path: Path) -> Dict[str, List[ManualReviewEntry]]:
    path = Path(path)
    df = read_excel_first_sheet(path)
    data = entries_from_frame(df)
    logging.info("Loaded manual data for %d applications from %s", len(data), path.name)
    return data


def entry_from_record(rec: Mapping[str, Any]) -> ManualReviewEntry:
    """
    One free-text review item already parsed into
    {section, letter, name, status, comments}. The label follows the
    reviewers' "<letter>. <name>" form.
    """
    letter = _cell_text(rec.get("letter")).rstrip(".")
    name = _cell_text(rec.get("name"))
    label = f"{letter}. {name}" if letter and name else (name or letter)
    return ManualReviewEntry(
        element_label=label,
        raw_status_text=_cell_text(rec.get("status")),
        section=_cell_text(rec.get("section")) or None,
        comments=_cell_text(rec.get("comments")) or None,
    )


def entries_from_records(records: Iterable[Mapping[str, Any]]) -> List[ManualReviewEntry]:
    out = []
    for rec in records:
        if not isinstance(rec, Mapping):
            continue
        e = entry_from_record(rec)
        if e.element_label:
            out.append(e)
    return out


def load_manual_records(path: Path) -> Dict[str, List[ManualReviewEntry]]:
    """
    Free-text reviews already parsed into records, as JSON keyed by tracking
    number: {"242645": [{"section": ..., "letter": ..., "name": ..., "status": ...}, ...]}.
    """
    path = Path(path)
    data = read_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: expected an object keyed by tracking number")
    out: Dict[str, List[ManualReviewEntry]] = {}
    for app_id, records in data.items():
        if not isinstance(records, list):
            logging.warning("%s: records for %s are not a list, skipped", path.name, app_id)
            continue
        entries = entries_from_records(records)
        if entries:
            out[str(app_id).strip()] = entries
    logging.info("Loaded manual data for %d applications from %s", len(out), path.name)
    return out


def entries_for(data: Mapping[str, List[ManualReviewEntry]], app_id: Optional[str]) -> List[ManualReviewEntry]:
    if not app_id:
        return []
    return list(data.get(str(app_id)) or [])
