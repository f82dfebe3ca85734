from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .manual_review import entries_for
from .matching import ElementMatcher, canonical_element
from .models import (
    MATCH,
    MISMATCH,
    MISSING_IN_AI,
    MISSING_IN_MANUAL,
    NOT_FOUND,
    ApplicationComparison,
    ComparisonRecord,
    ComparisonStats,
    ManualReviewEntry,
    SectionVerdicts,
)
from .normalize import extract_application_number
from .status import normalize_status
from .util import read_json


def _is_excluded(label: str, excluded: Sequence[str], matcher: ElementMatcher) -> bool:
    key = canonical_element(label)
    return any(key == canonical_element(x) or matcher.elements_match(label, x) for x in excluded)


def compare_application(
    sections: Mapping[str, SectionVerdicts],
    manual_entries: Sequence[ManualReviewEntry],
    app_id: str,
    matcher: Optional[ElementMatcher] = None,
    excluded: Optional[Sequence[str]] = None,
) -> ApplicationComparison:
    """
    Reconcile one application's AI verdicts with the project officer's review.

    Every AI verdict outside the exclusion list becomes one record (MATCH,
    MISMATCH or MISSING_IN_MANUAL) and counts towards `total`. Manual entries
    no verdict claimed become MISSING_IN_AI records and do not count towards
    `total`. Each manual entry is claimed by at most one verdict. Ambiguous
    matches keep the first candidate and are noted.
    """
    matcher = matcher or ElementMatcher()
    excluded = list(excluded or [])
    manual = [m for m in manual_entries if not _is_excluded(m.element_label, excluded, matcher)]
    labels = [m.element_label for m in manual]
    manual_sections = [m.section for m in manual]

    stats = ComparisonStats()
    records: List[ComparisonRecord] = []
    claimed: Set[int] = set()

    for section, sv in sections.items():
        if sv.error is not None:
            logging.warning("%s: section %s has error, not compared: %s", app_id, section, sv.error)
            continue
        for verdict in sv.all():
            if _is_excluded(verdict.element, excluded, matcher):
                continue
            stats.total += 1
            outcome = matcher.resolve(verdict.element, labels, section, manual_sections, skip=claimed)

            if not outcome.found:
                stats.missing_in_manual += 1
                records.append(
                    ComparisonRecord(
                        application_id=app_id,
                        section=section,
                        element=verdict.element,
                        ai_status=verdict.status,
                        manual_status=NOT_FOUND,
                        match_result=MISSING_IN_MANUAL,
                        ai_evidence=verdict.evidence_quote,
                        ai_reasoning=verdict.reasoning,
                        notes="Element not found in manual review",
                    )
                )
                continue

            entry = manual[outcome.index]
            claimed.add(outcome.index)
            manual_status = normalize_status(entry.raw_status_text)
            matched = verdict.status == manual_status
            if matched:
                stats.matching += 1
            else:
                stats.mismatching += 1

            notes = [] if matched else [f"AI: {verdict.status}, Manual: {manual_status}"]
            if outcome.ambiguous:
                others = [labels[i] for i in outcome.ambiguous_with]
                stats.ambiguous.append(verdict.element)
                notes.append(f"Ambiguous match, also matched: {'; '.join(others)}")

            records.append(
                ComparisonRecord(
                    application_id=app_id,
                    section=section,
                    element=verdict.element,
                    ai_status=verdict.status,
                    manual_status=manual_status,
                    match_result=MATCH if matched else MISMATCH,
                    ai_evidence=verdict.evidence_quote,
                    ai_reasoning=verdict.reasoning,
                    manual_comment=entry.comments or "",
                    notes=" | ".join(notes),
                )
            )

    for i, entry in enumerate(manual):
        if i in claimed:
            continue
        stats.missing_in_ai += 1
        records.append(
            ComparisonRecord(
                application_id=app_id,
                section=entry.section or "",
                element=entry.element_label,
                ai_status=NOT_FOUND,
                manual_status=normalize_status(entry.raw_status_text),
                match_result=MISSING_IN_AI,
                manual_comment=entry.comments or "",
                notes="Element not found in AI results",
            )
        )

    logging.info(
        "%s: %d compared, %d match, %d mismatch, %d missing in manual, %d missing in AI, success rate %.1f%%",
        app_id, stats.total, stats.matching, stats.mismatching, stats.missing_in_manual, stats.missing_in_ai,
        stats.success_rate_percent,
    )
    return ApplicationComparison(application_id=app_id, records=records, stats=stats)


def aggregate_success_rate(comparisons: Iterable[ApplicationComparison]) -> float:
    """Unweighted mean of per-application success rates (a mean of percentages, not a pooled rate)."""
    rates = [c.stats.success_rate_percent for c in comparisons]
    if not rates:
        return 0.0
    return round(sum(rates) / len(rates), 1)


def sections_from_results(results: Mapping[str, Any]) -> Dict[str, SectionVerdicts]:
    return {name: SectionVerdicts.from_dict(v if isinstance(v, dict) else {}) for name, v in results.items()}


def load_ai_results(path: Path) -> Tuple[str, Dict[str, SectionVerdicts]]:
    """(application id, sections) from a saved application result JSON."""
    path = Path(path)
    data = read_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: expected a JSON object")
    results = data.get("results", data.get("sections", data))
    if not isinstance(results, dict):
        raise ValueError(f"{path.name}: no results map")
    app_id = str(data.get("applicationNumber") or extract_application_number(path.name) or path.stem)
    return app_id, sections_from_results(results)


def find_result_files(results_dir: Path) -> List[Path]:
    p = Path(results_dir)
    if not p.is_dir():
        return []
    return sorted(x for x in p.glob("*.json") if "batch_summary" not in x.name)


def compare_all(
    results_dir: Path,
    manual_data: Mapping[str, Sequence[ManualReviewEntry]],
    matcher: Optional[ElementMatcher] = None,
    excluded: Optional[Sequence[str]] = None,
) -> List[ApplicationComparison]:
    """Compare every saved application result in results_dir that has manual review data."""
    matcher = matcher or ElementMatcher()
    files = find_result_files(results_dir)
    logging.info("Found %d AI result files", len(files))

    out: List[ApplicationComparison] = []
    for f in files:
        try:
            app_id, sections = load_ai_results(f)
        except (OSError, ValueError, json.JSONDecodeError) as e:
            logging.warning("Skipping %s: %s", f.name, e)
            continue
        entries = entries_for(manual_data, app_id)
        if not entries:
            logging.warning("No manual data for application %s (%s)", app_id, f.name)
            continue
        out.append(compare_application(sections, entries, app_id, matcher, excluded))

    if out:
        logging.info("Average success rate across %d applications: %.1f%%", len(out), aggregate_success_rate(out))
    return out
