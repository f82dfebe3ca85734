from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .cache import ResultCache
from .compare import aggregate_success_rate, compare_all
from .config import ReviewConfig, load_config
from .errors import ReviewError
from .llm import AzureOpenAIClient
from .manual_review import load_manual_records, load_manual_workbook
from .matching import ElementMatcher
from .ocr import PageOcr
from .reports import write_comparison_workbook, write_json_result, write_word_report
from .rules import RuleStore
from .util import timestamp_slug, write_json
from .validator import analyze_pdf, run_batch

EXIT_OK = 0
EXIT_PARTIAL = 2
EXIT_ERROR = 4


def _setup_logging(out_dir: Optional[Path]) -> Optional[Path]:
    log = logging.getLogger()
    log.setLevel(logging.INFO)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    # stderr handler
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(fmt)
    log.addHandler(sh)

    if out_dir:
        out_dir.mkdir(parents=True, exist_ok=True)
        log_path = out_dir / "run.log"
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(fmt)
        log.addHandler(fh)
        return log_path

    return None


def _load_cfg(args: argparse.Namespace) -> ReviewConfig:
    cfg = load_config(args.config)
    if getattr(args, "rules_dir", None):
        cfg.rules.rules_dir = Path(args.rules_dir)
    if getattr(args, "ocr", False):
        cfg.batch.ocr = True
    if getattr(args, "max_applications", None):
        cfg.batch.max_applications = int(args.max_applications)
    return cfg


def _ocr_for(cfg: ReviewConfig, out_dir: Path, tesseract_cmd: Optional[str]) -> Optional[PageOcr]:
    if not cfg.batch.ocr:
        return None
    return PageOcr(out_dir / "ocr_cache", lang=cfg.batch.ocr_lang, dpi=cfg.batch.ocr_dpi, tesseract_cmd=tesseract_cmd)


def cmd_validate(args: argparse.Namespace) -> int:
    pdf = Path(args.pdf)
    out_dir = Path(args.out)
    _setup_logging(out_dir)

    if not pdf.exists() or not pdf.is_file():
        logging.error("Application PDF not found: %s", pdf)
        return EXIT_ERROR

    cfg = _load_cfg(args)
    t0 = time.perf_counter()
    try:
        store = RuleStore.from_dir(cfg.rules.rules_dir, cfg.rules.filename)
        client = AzureOpenAIClient(cfg.llm)
        cache = None if args.no_cache else ResultCache(cfg.cache_dir)
        result = analyze_pdf(
            pdf, store, client, cfg,
            cache=cache,
            ocr=_ocr_for(cfg, out_dir, args.tesseract_cmd),
            text_dir=out_dir / "extracted-text",
        )
        json_path = write_json_result(result, out_dir / f"{pdf.stem}.json")
        docx_path = write_word_report(result, out_dir / f"{pdf.stem}.docx")
    except (ReviewError, OSError, ValueError) as e:
        logging.error("Failed to analyze %s: %s", pdf.name, e)
        return EXIT_ERROR

    v = result.validation
    exit_code = EXIT_OK if v.complete else EXIT_PARTIAL
    print(
        f"RULES={result.rule_year} path={v.path} found={v.verdict_count}/{v.expected_count} "
        f"gaps={len(v.coverage_gaps)} exit={exit_code} json={json_path} docx={docx_path} "
        f"time={time.perf_counter() - t0:.1f}s",
        flush=True,
    )
    return exit_code


def cmd_batch(args: argparse.Namespace) -> int:
    input_dir = Path(args.input)
    out_dir = Path(args.out) if args.out else input_dir / "Analysis_Results"
    _setup_logging(out_dir)

    if not input_dir.is_dir():
        logging.error("Input folder not found: %s", input_dir)
        return EXIT_ERROR

    cfg = _load_cfg(args)
    try:
        store = RuleStore.from_dir(cfg.rules.rules_dir, cfg.rules.filename)
        years = store.available_years()
        if years:
            logging.info("Found %d year-specific rule set(s): %s", len(years), ", ".join(f"20{y}" for y in years))
        else:
            logging.warning("No year-specific rule sets found in %s", cfg.rules.rules_dir)
        if not years and not store.default_rules:
            logging.error("No default rules and no year-specific rules available. Cannot proceed.")
            return EXIT_ERROR
        client = AzureOpenAIClient(cfg.llm)
    except (ReviewError, OSError, ValueError) as e:
        logging.error("Batch setup failed: %s", e)
        return EXIT_ERROR

    cache = None if args.no_cache else ResultCache(cfg.cache_dir)
    summary = run_batch(
        input_dir, out_dir, store, client, cfg,
        cache=cache,
        ocr=_ocr_for(cfg, out_dir, args.tesseract_cmd),
    )

    if summary.failed:
        exit_code = EXIT_ERROR if summary.failed == len(summary.results) else EXIT_PARTIAL
    else:
        exit_code = EXIT_PARTIAL if summary.partial else EXIT_OK
    print(
        f"PROCESSED={len(summary.results)} failed={summary.failed} partial={summary.partial} "
        f"skipped={len(summary.skipped)} exit={exit_code} out={out_dir}",
        flush=True,
    )
    return exit_code


def cmd_compare(args: argparse.Namespace) -> int:
    results_dir = Path(args.results)
    out_dir = Path(args.out) if args.out else results_dir / "comparisonresult"
    _setup_logging(out_dir)

    manual_path = Path(args.manual or args.manual_json)
    if not manual_path.is_file():
        logging.error("Manual review file not found: %s", manual_path)
        return EXIT_ERROR

    cfg = _load_cfg(args)
    matcher = ElementMatcher(cfg.comparison.element_aliases, cfg.comparison.letter_fallback)
    try:
        manual = load_manual_workbook(manual_path) if args.manual else load_manual_records(manual_path)
        comparisons = compare_all(results_dir, manual, matcher, cfg.comparison.excluded_elements)
    except (ReviewError, OSError, ValueError) as e:
        logging.error("Comparison failed: %s", e)
        return EXIT_ERROR

    if not comparisons:
        logging.error("No AI results with matching manual data in %s", results_dir)
        return EXIT_ERROR

    slug = timestamp_slug()
    report = write_comparison_workbook(comparisons, out_dir / f"Consolidated_Comparison_{slug}.xlsx")
    payload: Dict[str, Any] = {
        "averageSuccessRate": aggregate_success_rate(comparisons),
        "applications": {c.application_id: c.stats.to_dict() for c in comparisons},
    }
    write_json(out_dir / f"comparison_summary_{slug}.json", payload)
    print(
        f"APPLICATIONS={len(comparisons)} average_success_rate={payload['averageSuccessRate']:.1f}% report={report}",
        flush=True,
    )
    return EXIT_OK


def cmd_rules(args: argparse.Namespace) -> int:
    _setup_logging(None)
    cfg = _load_cfg(args)
    store = RuleStore.from_dir(cfg.rules.rules_dir, cfg.rules.filename)
    if store.default_rules:
        n = sum(len(c.elements) for c in store.default_rules)
        print(f"default: {len(store.default_rules)} chapters, {n} requirements")
    for y in store.available_years():
        yr = store.years[y]
        n = sum(len(c.elements) for c in yr.rules)
        print(f"{yr.full_year}: {len(yr.rules)} chapters, {n} requirements ({yr.path})")
    if not store.default_rules and not store.years:
        logging.error("No rule sets found in %s", cfg.rules.rules_dir)
        return EXIT_ERROR
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="hrsa-review", description="HRSA application compliance review CLI")
    parser.add_argument("--config", default="config/review.yaml", help="Run configuration (default: config/review.yaml)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_val = sub.add_parser("validate", help="Validate one application PDF")
    p_val.add_argument("--pdf", required=True, help="Path to application PDF")
    p_val.add_argument("--out", default="out", help="Output directory (default: out)")
    p_val.add_argument("--rules-dir", default=None, help="Rules directory (overrides config)")
    p_val.add_argument("--no-cache", action="store_true", help="Ignore and do not write the result cache")
    p_val.add_argument("--ocr", action="store_true", help="OCR pages that have no text layer")
    p_val.add_argument("--tesseract-cmd", default=None, help="Path to tesseract executable (optional)")

    p_batch = sub.add_parser("batch", help="Validate every PDF in a folder, one at a time")
    p_batch.add_argument("--input", required=True, help="Folder containing application PDFs")
    p_batch.add_argument("--out", default=None, help="Output directory (default: <input>/Analysis_Results)")
    p_batch.add_argument("--rules-dir", default=None, help="Rules directory (overrides config)")
    p_batch.add_argument("--max-applications", type=int, default=None, help="Process at most N pending applications")
    p_batch.add_argument("--no-cache", action="store_true", help="Ignore and do not write the result cache")
    p_batch.add_argument("--ocr", action="store_true", help="OCR pages that have no text layer")
    p_batch.add_argument("--tesseract-cmd", default=None, help="Path to tesseract executable (optional)")

    p_cmp = sub.add_parser("compare", help="Compare saved AI results with the manual review")
    p_cmp.add_argument("--results", required=True, help="Folder with per-application JSON results")
    src = p_cmp.add_mutually_exclusive_group(required=True)
    src.add_argument("--manual", default=None, help="Manual review workbook (.xlsx)")
    src.add_argument("--manual-json", default=None, help="Parsed free-text reviews (.json, keyed by tracking number)")
    p_cmp.add_argument("--out", default=None, help="Output directory (default: <results>/comparisonresult)")

    p_rules = sub.add_parser("rules", help="List available rule sets")
    p_rules.add_argument("--rules-dir", default=None, help="Rules directory (overrides config)")

    args = parser.parse_args(argv)

    if args.cmd == "validate":
        return cmd_validate(args)
    if args.cmd == "batch":
        return cmd_batch(args)
    if args.cmd == "compare":
        return cmd_compare(args)
    if args.cmd == "rules":
        return cmd_rules(args)

    print("Unknown command", file=sys.stderr)
    return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
