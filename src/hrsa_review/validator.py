from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .cache import ResultCache
from .config import ReviewConfig
from .errors import RetryExhausted, RuleSetMissing
from .llm import CompleteFn
from .matching import ElementMatcher
from .models import ApplicationResult, RuleSet, SectionVerdicts, StructuralMismatch, ValidationResult
from .normalize import (
    detect_announcement_year,
    estimate_tokens,
    extract_application_number,
    normalize_text,
    reduction_percent,
)
from .parser import coverage_gap, parse_chapter_response, parse_response, verdict_counts
from .pdf_reader import extract_application_text
from .prompt import build_chapter_prompt, build_messages, build_prompt
from .reports import write_json_result, write_word_report
from .retry import with_retry
from .rules import RuleStore
from .util import list_pdfs, sha256_file, timestamp_slug, write_json

Sleep = Callable[[float], None]
OcrFn = Callable[[Path, List[int]], Dict[int, str]]


def validate_text(
    text: str,
    rule_set: RuleSet,
    app_id: str,
    complete: CompleteFn,
    cfg: Optional[ReviewConfig] = None,
    *,
    matcher: Optional[ElementMatcher] = None,
    sleep: Sleep = time.sleep,
) -> ValidationResult:
    """
    Validate one application's text against a rule set.

    All requirements go out in a single LLM call under the bulk retry budget.
    If that budget is exhausted the chapters are validated one call at a
    time, sequentially, under the per-chapter budget.
    """
    cfg = cfg or ReviewConfig()
    if not rule_set.rules or rule_set.requirement_count == 0:
        raise RuleSetMissing(f"{app_id}: rule set {rule_set.version_label!r} has no requirements")

    normalized = normalize_text(text)
    logging.info(
        "%s: normalized %d -> %d chars (%.1f%% reduction), ~%d tokens",
        app_id, len(text or ""), len(normalized), reduction_percent(text or "", normalized), estimate_tokens(normalized),
    )

    messages = build_messages(build_prompt(rule_set.rules, normalized))
    logging.info(
        "%s: validating %d requirements across %d sections against %s rules in one call",
        app_id, rule_set.requirement_count, len(rule_set.rules), rule_set.version_label,
    )

    def bulk_attempt() -> ValidationResult:
        raw = complete(messages, cfg.llm.temperature, cfg.llm.max_tokens)
        return parse_response(raw, rule_set.rules)

    try:
        return with_retry(bulk_attempt, policy=cfg.retry.bulk_policy(), label=f"{app_id} all sections", sleep=sleep)
    except RetryExhausted as e:
        logging.warning("%s: bulk validation exhausted (%s); switching to per-chapter validation", app_id, e.last_error)

    return validate_by_chapter(normalized, rule_set, app_id, complete, cfg, matcher=matcher, sleep=sleep)


def validate_by_chapter(
    normalized: str,
    rule_set: RuleSet,
    app_id: str,
    complete: CompleteFn,
    cfg: Optional[ReviewConfig] = None,
    *,
    matcher: Optional[ElementMatcher] = None,
    sleep: Sleep = time.sleep,
) -> ValidationResult:
    """
    One call per chapter, in rule-set order. A chapter that still fails after
    its retries is recorded as {"error": ...}; if every chapter fails the
    last RetryExhausted propagates.
    """
    cfg = cfg or ReviewConfig()
    matcher = matcher or ElementMatcher(cfg.comparison.element_aliases, cfg.comparison.letter_fallback)

    sections: Dict[str, SectionVerdicts] = {}
    gaps: List[StructuralMismatch] = []
    last_error: Optional[RetryExhausted] = None
    failed = 0

    for i, chapter in enumerate(rule_set.rules):
        if i > 0 and cfg.batch.chapter_delay_sec > 0:
            logging.info("Waiting %.0fs before next section...", cfg.batch.chapter_delay_sec)
            sleep(cfg.batch.chapter_delay_sec)

        messages = build_messages(build_chapter_prompt(chapter, normalized))

        def chapter_attempt(chapter=chapter, messages=messages):
            raw = complete(messages, cfg.llm.chapter_temperature, cfg.llm.chapter_max_tokens)
            return parse_chapter_response(raw, chapter, matcher)

        try:
            verdicts, gap = with_retry(
                chapter_attempt, policy=cfg.retry.chapter_policy(), label=f"{app_id} {chapter.section_name}", sleep=sleep
            )
        except RetryExhausted as e:
            logging.error("%s: failed %s: %s", app_id, chapter.section_name, e.last_error)
            sections[chapter.section_name] = SectionVerdicts(error=str(e.last_error))
            last_error = e
            failed += 1
            continue

        sections[chapter.section_name] = verdicts
        if gap is not None:
            gaps.append(gap)
        logging.info(
            "  %s: %d compliant, %d non-compliant, %d N/A",
            chapter.section_name, len(verdicts.compliant), len(verdicts.non_compliant), len(verdicts.not_applicable),
        )

    if last_error is not None and failed == len(rule_set.rules):
        raise last_error

    counts = verdict_counts(sections, rule_set.requirement_count, 0)
    counts["failedSections"] = failed
    logging.info(
        "%s: per-chapter validation done: %d of %d requirements, %d section(s) failed",
        app_id, counts["total"], rule_set.requirement_count, failed,
    )
    return ValidationResult(
        sections=sections,
        expected_count=rule_set.requirement_count,
        counts=counts,
        coverage_gaps=gaps,
        path="per_chapter",
    )


def result_from_cache(cached: Dict[str, Any], rule_set: RuleSet) -> ValidationResult:
    sections = {name: SectionVerdicts.from_dict(v or {}) for name, v in (cached.get("results") or {}).items()}
    gaps: List[StructuralMismatch] = []
    for ch in rule_set.rules:
        sv = sections.get(ch.section_name)
        if sv is None or sv.error is not None:
            continue
        gap = coverage_gap(ch, sv)
        if gap is not None:
            gaps.append(gap)
    return ValidationResult(
        sections=sections,
        expected_count=rule_set.requirement_count,
        counts=verdict_counts(sections, rule_set.requirement_count, 0),
        coverage_gaps=gaps,
        path="cache",
    )


def analyze_pdf(
    pdf_path: Path,
    store: RuleStore,
    complete: CompleteFn,
    cfg: Optional[ReviewConfig] = None,
    *,
    cache: Optional[ResultCache] = None,
    ocr: Optional[OcrFn] = None,
    text_dir: Optional[Path] = None,
    sleep: Sleep = time.sleep,
) -> ApplicationResult:
    """Extract, select rules by announcement year, validate (or reuse a cached result)."""
    cfg = cfg or ReviewConfig()
    pdf_path = Path(pdf_path)
    filename = pdf_path.name
    app_number = extract_application_number(filename)
    app_id = app_number or pdf_path.stem
    logging.info("Analyzing: %s (App #: %s)", filename, app_number or "Unknown")

    t0 = time.perf_counter()
    text = extract_application_text(pdf_path, ocr=ocr)
    logging.info("Extraction took %.1fs", time.perf_counter() - t0)
    if text_dir is not None:
        text_dir.mkdir(parents=True, exist_ok=True)
        (text_dir / f"{pdf_path.stem}_extracted.txt").write_text(text, encoding="utf-8")

    year = detect_announcement_year(text)
    if year:
        logging.info("Detected funding opportunity HRSA-%s-XXX", year)
    else:
        logging.warning("No HRSA announcement number detected in %s; using default rules", filename)
    rule_set = store.load_rule_set(year)

    fingerprint = sha256_file(pdf_path) if cache is not None else ""
    cached = cache.get(fingerprint, rule_set.version_label) if cache is not None else None

    if cached is not None:
        validation = result_from_cache(cached, rule_set)
    else:
        t1 = time.perf_counter()
        validation = validate_text(text, rule_set, app_id, complete, cfg, sleep=sleep)
        logging.info("Analysis completed in %.1fs", time.perf_counter() - t1)

    result = ApplicationResult(
        application_number=app_number,
        filename=filename,
        rule_year=rule_set.version_label,
        announcement_year=year,
        validation=validation,
        timestamp=ApplicationResult.now_iso(),
    )
    if cache is not None and cached is None:
        if any(s.error is not None for s in validation.sections.values()):
            logging.warning("Not caching %s: some sections failed", filename)
        else:
            cache.put(fingerprint, rule_set.version_label, result)
    return result


@dataclass
class BatchSummary:
    processed_at: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.get("error"))

    @property
    def partial(self) -> int:
        return sum(1 for r in self.results if not r.get("error") and not r.get("complete", True))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processedAt": self.processed_at,
            "totalProcessed": len(self.results),
            "skipped": list(self.skipped),
            "failed": self.failed,
            "partial": self.partial,
            "results": list(self.results),
        }


def run_batch(
    input_dir: Path,
    out_dir: Path,
    store: RuleStore,
    complete: CompleteFn,
    cfg: Optional[ReviewConfig] = None,
    *,
    cache: Optional[ResultCache] = None,
    ocr: Optional[OcrFn] = None,
    sleep: Sleep = time.sleep,
) -> BatchSummary:
    """
    Validate every PDF in input_dir, one at a time with a fixed delay between
    applications. PDFs whose Word report already exists in out_dir are
    skipped; a failing application is recorded and the batch continues.
    """
    cfg = cfg or ReviewConfig()
    input_dir, out_dir = Path(input_dir), Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    pdfs = list_pdfs(input_dir)
    done = {p.stem for p in out_dir.glob("*.docx")}
    pending = [f for f in pdfs if Path(f).stem not in done]
    summary = BatchSummary(processed_at=ApplicationResult.now_iso(), skipped=[f for f in pdfs if Path(f).stem in done])
    logging.info("Found %d PDF files, %d already completed", len(pdfs), len(summary.skipped))

    if cfg.batch.max_applications:
        pending = pending[: cfg.batch.max_applications]

    for i, name in enumerate(pending):
        logging.info("Processing %d/%d: %s", i + 1, len(pending), name)
        pdf_path = input_dir / name
        try:
            result = analyze_pdf(
                pdf_path, store, complete, cfg, cache=cache, ocr=ocr, text_dir=out_dir / "extracted-text", sleep=sleep
            )
            json_path = write_json_result(result, out_dir / f"{pdf_path.stem}.json")
            docx_path = write_word_report(result, out_dir / f"{pdf_path.stem}.docx")
            summary.results.append(
                {
                    "filename": name,
                    "applicationNumber": result.application_number,
                    "ruleYear": result.rule_year,
                    "validationPath": result.validation.path,
                    "complete": result.validation.complete,
                    "counts": dict(result.validation.counts),
                    "json": json_path.name,
                    "docx": docx_path.name,
                }
            )
        except (RuntimeError, OSError, ValueError) as e:
            logging.error("Failed to process %s: %s", name, e)
            summary.results.append({"filename": name, "error": f"{type(e).__name__}: {e}", "timestamp": ApplicationResult.now_iso()})

        if i < len(pending) - 1 and cfg.batch.delay_between_applications_sec > 0:
            logging.info("Waiting %.0fs before next application...", cfg.batch.delay_between_applications_sec)
            sleep(cfg.batch.delay_between_applications_sec)

    summary_path = write_json(out_dir / f"batch_summary_{timestamp_slug()}.json", summary.to_dict())
    logging.info(
        "Batch processing completed: %d processed, %d failed, %d skipped (%s)",
        len(summary.results), summary.failed, len(summary.skipped), summary_path.name,
    )
    return summary
