from __future__ import annotations

from conftest import BUDGET, EL_BUDGET, EL_SFDP, SLIDING_FEE, bulk_reply, validation
from hrsa_review.cache import ResultCache
from hrsa_review.models import ApplicationResult, SectionVerdicts
from hrsa_review.parser import parse_response
from hrsa_review.validator import result_from_cache


def _result(rules):
    res = parse_response(
        bulk_reply(validation(SLIDING_FEE, EL_SFDP, "COMPLIANT"), validation(BUDGET, EL_BUDGET, "NOT_APPLICABLE")),
        rules,
    )
    return ApplicationResult("242645", "Application-242645.pdf", "2026", "26", res)


def test_put_then_get(tmp_path, two_chapter_rules):
    cache = ResultCache(tmp_path)
    path = cache.put("abc123", "2026", _result(two_chapter_rules))
    assert path.name == "abc123_2026.json"

    data = cache.get("abc123", "2026")
    assert data["fileHash"] == "abc123"
    assert data["manualVersion"] == "2026"
    assert data["applicationName"] == "Application-242645.pdf"
    assert set(data["results"]) == {SLIDING_FEE, BUDGET}


def test_versions_are_kept_apart(tmp_path, two_chapter_rules):
    cache = ResultCache(tmp_path)
    cache.put("abc123", "default", _result(two_chapter_rules))
    assert cache.get("abc123", "2026") is None
    assert cache.get("abc123", "default") is not None
    assert cache.get("other", "default") is None


def test_unreadable_entries_are_misses(tmp_path):
    cache = ResultCache(tmp_path)
    cache.path_for("bad", "2026").write_text("{truncated", encoding="utf-8")
    cache.path_for("empty", "2026").write_text("{}", encoding="utf-8")
    assert cache.get("bad", "2026") is None
    assert cache.get("empty", "2026") is None


def test_version_label_is_made_filename_safe(tmp_path):
    assert ResultCache(tmp_path).path_for("f", "FY 2026/rev 2").name == "f_FY-2026-rev-2.json"


def test_cached_results_keep_coverage_gaps(tmp_path, two_chapter_rules, rule_set):
    cache = ResultCache(tmp_path)
    cache.put("abc123", "2026", _result(two_chapter_rules))
    v = result_from_cache(cache.get("abc123", "2026"), rule_set)
    assert v.path == "cache"
    assert v.verdict_count == 2
    assert v.sections[BUDGET].not_applicable[0].element == EL_BUDGET
    [gap] = v.coverage_gaps
    assert gap.section == SLIDING_FEE
    assert gap.found == 1


def test_entries_with_failed_sections_are_misses(tmp_path, two_chapter_rules):
    cache = ResultCache(tmp_path)
    result = _result(two_chapter_rules)
    result.validation.sections[BUDGET] = SectionVerdicts(error="gave up after 4 attempts")
    cache.put("abc123", "2026", result)
    assert cache.path_for("abc123", "2026").exists()
    assert cache.get("abc123", "2026") is None
