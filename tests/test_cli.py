from __future__ import annotations

import json

import pandas as pd

from conftest import BUDGET, EL_BUDGET, EL_FPG, EL_SFDP, SLIDING_FEE, bulk_reply, validation
from hrsa_review.__main__ import EXIT_ERROR, EXIT_OK, main
from hrsa_review.models import ApplicationResult
from hrsa_review.parser import parse_response


def _write_rules(path, section, *elements):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps([{"chapter": section, "section": section, "elements": [{"element": e, "requirementText": e} for e in elements]}]),
        encoding="utf-8",
    )


def test_rules_listing(tmp_path, capsys):
    _write_rules(tmp_path / "rules" / "compliance-rules.json", BUDGET, EL_BUDGET, "Element b - Revenue Sources")
    _write_rules(tmp_path / "rules" / "26" / "compliance-rules.json", BUDGET, EL_BUDGET)

    rc = main(["--config", str(tmp_path / "none.yaml"), "rules", "--rules-dir", str(tmp_path / "rules")])
    assert rc == EXIT_OK
    out = capsys.readouterr().out
    assert "default: 1 chapters, 2 requirements" in out
    assert "2026: 1 chapters, 1 requirements" in out


def test_rules_listing_without_rules(tmp_path):
    assert main(["--config", str(tmp_path / "none.yaml"), "rules", "--rules-dir", str(tmp_path)]) == EXIT_ERROR


def test_validate_missing_pdf(tmp_path):
    rc = main(["--config", str(tmp_path / "none.yaml"), "validate", "--pdf", str(tmp_path / "missing.pdf"), "--out", str(tmp_path / "out")])
    assert rc == EXIT_ERROR


def _write_results(tmp_path, two_chapter_rules):
    results = tmp_path / "results"
    results.mkdir()
    res = parse_response(
        bulk_reply(
            validation(SLIDING_FEE, EL_SFDP, "COMPLIANT"),
            validation(SLIDING_FEE, EL_FPG, "COMPLIANT"),
            validation(BUDGET, EL_BUDGET, "COMPLIANT"),
        ),
        two_chapter_rules,
    )
    payload = ApplicationResult("242645", "Application-242645.pdf", "2026", "26", res).to_dict()
    (results / "Application-242645.json").write_text(json.dumps(payload), encoding="utf-8")
    return results


def test_compare_end_to_end(tmp_path, two_chapter_rules, capsys):
    results = _write_results(tmp_path, two_chapter_rules)

    manual = tmp_path / "manual.xlsx"
    pd.DataFrame(
        {
            "trackingNo": [242645, 242645, 242645],
            "question": [
                "b. Sliding Fee Discount Program Policies",
                "e. Incorporation of Current Federal Poverty Guidelines",
                "a. Annual Budgeting for Scope of Project",
            ],
            "answer": ["Yes, approved", "No, outdated", "C"],
            "comment": ["", "2019 guidelines", ""],
        }
    ).to_excel(manual, index=False)

    out = tmp_path / "cmp"
    rc = main(["--config", str(tmp_path / "none.yaml"), "compare", "--results", str(results), "--manual", str(manual), "--out", str(out)])
    assert rc == EXIT_OK

    assert len(list(out.glob("Consolidated_Comparison_*.xlsx"))) == 1
    [summary] = out.glob("comparison_summary_*.json")
    data = json.loads(summary.read_text(encoding="utf-8"))
    stats = data["applications"]["242645"]
    assert (stats["total"], stats["matching"], stats["mismatching"]) == (3, 2, 1)
    assert data["averageSuccessRate"] == 66.7
    assert "APPLICATIONS=1" in capsys.readouterr().out
    assert (out / "run.log").exists()


def test_compare_with_parsed_free_text_reviews(tmp_path, two_chapter_rules):
    results = _write_results(tmp_path, two_chapter_rules)
    manual = tmp_path / "manual.json"
    records = [
        {"section": SLIDING_FEE, "letter": "b.", "name": "Sliding Fee Discount Program Policies", "status": "Yes, approved"},
        {"section": SLIDING_FEE, "letter": "e.", "name": "Incorporation of Current Federal Poverty Guidelines", "status": "Not met"},
        {"section": BUDGET, "letter": "a.", "name": "Annual Budgeting for Scope of Project", "status": "C"},
    ]
    manual.write_text(json.dumps({"242645": records}), encoding="utf-8")

    out = tmp_path / "cmp"
    rc = main(["--config", str(tmp_path / "none.yaml"), "compare", "--results", str(results), "--manual-json", str(manual), "--out", str(out)])
    assert rc == EXIT_OK
    [summary] = out.glob("comparison_summary_*.json")
    stats = json.loads(summary.read_text(encoding="utf-8"))["applications"]["242645"]
    assert (stats["total"], stats["matching"], stats["mismatching"]) == (3, 2, 1)


def test_compare_without_matching_manual_data(tmp_path):
    results = tmp_path / "results"
    results.mkdir()
    manual = tmp_path / "manual.xlsx"
    pd.DataFrame({"trackingNo": [1], "question": ["a. Something"], "answer": ["Yes"]}).to_excel(manual, index=False)
    rc = main(["--config", str(tmp_path / "none.yaml"), "compare", "--results", str(results), "--manual", str(manual)])
    assert rc == EXIT_ERROR
