from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from hrsa_review.errors import RuleSetMissing
from hrsa_review.rules import RuleStore, load_rule_set, parse_rules, scan_rule_years

REPO_ROOT = Path(__file__).resolve().parents[1]


def _chapter(section: str, *elements: str) -> dict:
    return {
        "chapter": f"Chapter: {section}",
        "section": section,
        "elements": [{"element": e, "requirementText": f"{e} text"} for e in elements],
    }


def _write(path: Path, chapters: list) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(chapters), encoding="utf-8")


def test_year_specific_rules_are_labelled_with_four_digit_year(tmp_path):
    _write(tmp_path / "compliance-rules.json", [_chapter("Budget", "Element a - Default")])
    _write(tmp_path / "26" / "compliance-rules.json", [_chapter("Budget", "Element a - 2026", "Element b - 2026")])

    rs = load_rule_set("26", tmp_path)
    assert rs.version_label == "2026"
    assert rs.requirement_count == 2


def test_unknown_year_falls_back_to_default_with_warning(tmp_path, caplog):
    _write(tmp_path / "compliance-rules.json", [_chapter("Budget", "Element a - Default")])
    _write(tmp_path / "26" / "compliance-rules.json", [_chapter("Budget", "Element a - 2026")])

    with caplog.at_level(logging.WARNING):
        rs = load_rule_set("25", tmp_path)
    assert rs.version_label == "default"
    assert rs.rules[0].elements[0].element_label == "Element a - Default"
    assert any("falling back to default" in r.getMessage() for r in caplog.records)


def test_no_year_uses_default(tmp_path):
    _write(tmp_path / "compliance-rules.json", [_chapter("Budget", "Element a - Default")])
    assert load_rule_set(None, tmp_path).version_label == "default"


def test_missing_default_and_year_is_fatal(tmp_path):
    _write(tmp_path / "26" / "compliance-rules.json", [_chapter("Budget", "Element a - 2026")])
    store = RuleStore.from_dir(tmp_path)
    assert store.load_rule_set("26").version_label == "2026"
    with pytest.raises(RuleSetMissing):
        store.load_rule_set("24")
    with pytest.raises(RuleSetMissing):
        store.load_rule_set(None)


def test_scan_ignores_non_year_folders_and_bad_files(tmp_path):
    _write(tmp_path / "26" / "compliance-rules.json", [_chapter("Budget", "Element a")])
    _write(tmp_path / "cache" / "compliance-rules.json", [_chapter("Budget", "Element a")])
    (tmp_path / "27").mkdir()
    (tmp_path / "25").mkdir()
    (tmp_path / "25" / "compliance-rules.json").write_text("[{unclosed", encoding="utf-8")

    years = scan_rule_years(tmp_path)
    assert sorted(years) == ["26"]


def test_yaml_rule_file_and_mapping_form(tmp_path):
    (tmp_path / "compliance-rules.json").write_text(
        "rules:\n"
        "  - chapter: Chapter 17\n"
        "    section: Budget\n"
        "    elements:\n"
        "      - element: Element a - Budgeting for Scope of Project\n"
        "        requirementText: Annual budget\n"
        "        requirementDetails: [Federal sources, Non-federal sources]\n"
        "        footnotes: Select 'N/A' if not applicable\n",
        encoding="utf-8",
    )
    rs = load_rule_set(None, tmp_path)
    el = rs.rules[0].elements[0]
    assert el.must_address_items == ["Federal sources", "Non-federal sources"]
    assert el.applicability_note == "Select 'N/A' if not applicable"


def test_parse_rules_skips_chapters_without_section():
    chapters = parse_rules([{"chapter": "No section", "elements": []}, _chapter("Budget", "Element a")])
    assert [c.section_name for c in chapters] == ["Budget"]
    assert parse_rules("not a list") == []


def test_shipped_rules_load():
    store = RuleStore.from_dir(REPO_ROOT / "data")
    assert "26" in store.available_years()
    assert store.load_rule_set("26").requirement_count > 0
    assert store.load_rule_set(None).version_label == "default"
