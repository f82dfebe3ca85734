from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

import pandas as pd
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from .compare import aggregate_success_rate
from .models import MATCH, MISMATCH, ApplicationComparison, ApplicationResult, ValidationVerdict
from .schema_validate import validate_application_result
from .util import write_json

GREEN = "FF00B050"
AMBER = "FFFFC000"
RED = "FFFF0000"
HEADER_BLUE = "FF4472C4"
WHITE = "FFFFFFFF"

SUMMARY_COLUMNS = [
    ("Application Number", 20),
    ("Total Elements", 15),
    ("Matches", 12),
    ("Mismatches", 12),
    ("Missing in AI", 15),
    ("Missing in Manual", 18),
    ("Success Rate (%)", 18),
]

DETAIL_COLUMNS = [
    ("Application Number", "applicationNumber", 20),
    ("Section", "section", 30),
    ("Element", "element", 50),
    ("AI Status", "aiStatus", 18),
    ("Manual Status", "manualStatus", 18),
    ("Match Status", "match", 18),
    ("AI Reasoning", "aiReasoning", 60),
    ("AI Evidence", "aiEvidence", 60),
    ("Manual Comment", "manualComment", 60),
    ("Notes", "notes", 40),
]


def _fill(argb: str) -> PatternFill:
    return PatternFill(fill_type="solid", start_color=argb, end_color=argb)


# -----------------------------------------------------------------------------
# JSON
# -----------------------------------------------------------------------------
def write_json_result(result: ApplicationResult, path: Path) -> Path:
    """Persist an application result after checking it against its schema."""
    payload = result.to_dict()
    validate_application_result(payload)
    p = write_json(path, payload)
    logging.info("Saved JSON result: %s", p.name)
    return p


# -----------------------------------------------------------------------------
# Word
# -----------------------------------------------------------------------------
def _label_value(doc, label: str, value: str) -> None:
    p = doc.add_paragraph()
    p.add_run(label).bold = True
    p.add_run(value)


def _items(doc, title: str, items: Sequence[ValidationVerdict], show_evidence: bool) -> None:
    if not items:
        return
    doc.add_heading(title, level=2)
    for i, v in enumerate(items, start=1):
        p = doc.add_paragraph()
        p.add_run(f"{i}. {v.element}").bold = True
        if show_evidence:
            doc.add_paragraph(f"Evidence: {v.evidence_quote}")
            doc.add_paragraph(f"Location: {v.evidence_location}")
            if v.evidence_section:
                doc.add_paragraph(f"Source: {v.evidence_section}")
        else:
            doc.add_paragraph(f"Reasoning: {v.reasoning}")


def write_word_report(result: ApplicationResult, path: Path) -> Path:
    """Per-application review report: summary counts, then each section's verdicts."""
    doc = Document()
    title = doc.add_heading("HRSA Pre-Funding Review Report", 0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    sub = doc.add_heading(f"Application: {result.application_number or result.filename}", level=2)
    sub.alignment = WD_ALIGN_PARAGRAPH.CENTER

    p = doc.add_paragraph()
    p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    p.add_run("Validated Against: ").bold = True
    p.add_run(f"{result.rule_year} Compliance Rules")
    if result.announcement_year:
        p.add_run(f"  |  Announcement: HRSA-{result.announcement_year}-XXX").italic = True

    sections = result.validation.sections
    ok = [s for s in sections.values() if s.error is None]
    compliant = sum(len(s.compliant) for s in ok)
    non_compliant = sum(len(s.non_compliant) for s in ok)
    not_applicable = sum(len(s.not_applicable) for s in ok)

    doc.add_heading("Summary Statistics", level=1)
    _label_value(doc, "Total Requirements: ", str(compliant + non_compliant + not_applicable))
    _label_value(doc, "Compliant: ", str(compliant))
    _label_value(doc, "Non-Compliant: ", str(non_compliant))
    _label_value(doc, "Not Applicable: ", str(not_applicable))

    gaps = result.validation.coverage_gaps
    if gaps:
        doc.add_heading("Coverage Gaps", level=2)
        for g in gaps:
            doc.add_paragraph(
                f"{g.section}: {g.found} of {g.expected} elements validated; not validated: {', '.join(g.missing_elements)}",
                style="List Bullet",
            )

    for name, sv in sections.items():
        doc.add_heading(name, level=1)
        if sv.error is not None:
            doc.add_paragraph(f"Error: {sv.error}")
            continue
        _items(doc, "Compliant Items", sv.compliant, show_evidence=True)
        _items(doc, "Non-Compliant Items", sv.non_compliant, show_evidence=False)
        _items(doc, "Not Applicable Items", sv.not_applicable, show_evidence=False)

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    doc.save(str(p))
    logging.info("Generated Word document: %s", p.name)
    return p


# -----------------------------------------------------------------------------
# Excel comparison workbook
# -----------------------------------------------------------------------------
def _style_header(ws, ncols: int) -> None:
    for col in range(1, ncols + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = Font(bold=True, color=WHITE)
        cell.fill = _fill(HEADER_BLUE)


def _set_widths(ws, widths: List[int]) -> None:
    for i, w in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = w


def rate_color(rate: float) -> str:
    if rate >= 90:
        return GREEN
    if rate >= 70:
        return AMBER
    return RED


def write_comparison_workbook(comparisons: Sequence[ApplicationComparison], path: Path) -> Path:
    """
    Two sheets: "Master Summary" (per-application stats, colour-coded success
    rate, overall average) and "All Comparisons" (every record, filterable).
    """
    summary_df = pd.DataFrame(
        [
            [c.application_id, c.stats.total, c.stats.matching, c.stats.mismatching,
             c.stats.missing_in_ai, c.stats.missing_in_manual, c.stats.success_rate_percent]
            for c in comparisons
        ],
        columns=[name for name, _ in SUMMARY_COLUMNS],
    )
    detail_df = pd.DataFrame(
        [[r.to_dict()[key] for _, key, _ in DETAIL_COLUMNS] for c in comparisons for r in c.records],
        columns=[name for name, _, _ in DETAIL_COLUMNS],
    )

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(p, engine="openpyxl") as writer:
        summary_df.to_excel(writer, sheet_name="Master Summary", index=False)
        detail_df.to_excel(writer, sheet_name="All Comparisons", index=False)

        ws = writer.sheets["Master Summary"]
        _style_header(ws, len(SUMMARY_COLUMNS))
        _set_widths(ws, [w for _, w in SUMMARY_COLUMNS])
        rate_col = len(SUMMARY_COLUMNS)
        for row, c in enumerate(comparisons, start=2):
            cell = ws.cell(row=row, column=rate_col)
            color = rate_color(c.stats.success_rate_percent)
            cell.fill = _fill(color)
            if color == RED:
                cell.font = Font(color=WHITE)

        ws.append([])
        ws.append(["Overall Statistics"])
        ws.cell(row=ws.max_row, column=1).font = Font(bold=True)
        ws.append(["Total Applications", len(comparisons)])
        ws.append(["Average Success Rate", f"{aggregate_success_rate(comparisons):.1f}%"])

        ws = writer.sheets["All Comparisons"]
        _style_header(ws, len(DETAIL_COLUMNS))
        _set_widths(ws, [w for _, _, w in DETAIL_COLUMNS])
        ws.auto_filter.ref = f"A1:{get_column_letter(len(DETAIL_COLUMNS))}1"
        match_col = 6
        for row in range(2, ws.max_row + 1):
            cell = ws.cell(row=row, column=match_col)
            if cell.value == MATCH:
                cell.fill = _fill(GREEN)
                cell.font = Font(color=WHITE, bold=True)
            elif cell.value == MISMATCH:
                cell.fill = _fill(RED)
                cell.font = Font(color=WHITE, bold=True)
            else:
                cell.fill = _fill(AMBER)
                cell.font = Font(bold=True)

    logging.info("Comparison report written: %s", p)
    return p
