from __future__ import annotations

import json

import pytest

from conftest import BUDGET, EL_BUDGET, EL_FPG, EL_SFDP, SLIDING_FEE, bulk_reply, validation
from hrsa_review.errors import MalformedResponse
from hrsa_review.models import NON_COMPLIANT, NOT_FOUND_TEXT
from hrsa_review.parser import decode_reply, parse_chapter_response, parse_response, strip_code_fence


def test_full_reply_buckets_every_element(two_chapter_rules):
    raw = bulk_reply(
        validation(SLIDING_FEE, EL_SFDP, "COMPLIANT"),
        validation(SLIDING_FEE, EL_FPG, "NON_COMPLIANT"),
        validation(BUDGET, EL_BUDGET, "NOT_APPLICABLE"),
    )
    res = parse_response(raw, two_chapter_rules)

    assert res.complete
    assert res.path == "bulk"
    assert res.expected_count == 3
    assert res.verdict_count == 3
    sf = res.sections[SLIDING_FEE]
    assert [v.element for v in sf.compliant] == [EL_SFDP]
    assert [v.element for v in sf.non_compliant] == [EL_FPG]
    assert [v.element for v in res.sections[BUDGET].not_applicable] == [EL_BUDGET]
    assert res.counts == {
        "expected": 3,
        "total": 3,
        "compliant": 1,
        "nonCompliant": 1,
        "notApplicable": 1,
        "unrecognizedStatus": 0,
    }
    # requirement text comes from the rule set, not the reply
    assert sf.compliant[0].requirement_echo == "Board-approved sliding fee discount program policies."


def test_unrecognized_status_is_non_compliant_and_counted(two_chapter_rules):
    raw = bulk_reply(
        validation(SLIDING_FEE, EL_SFDP, "Partially compliant"),
        validation(SLIDING_FEE, EL_FPG, "non-compliant"),
        validation(BUDGET, EL_BUDGET, None),
    )
    res = parse_response(raw, two_chapter_rules)
    assert len(res.sections[SLIDING_FEE].non_compliant) == 2
    assert len(res.sections[BUDGET].non_compliant) == 1
    assert res.counts["unrecognizedStatus"] == 2
    assert res.counts["nonCompliant"] == 3


def test_code_fence_and_surrounding_prose(two_chapter_rules):
    body = bulk_reply(validation(BUDGET, EL_BUDGET, "COMPLIANT"))
    assert strip_code_fence(f"```json\n{body}\n```") == body
    assert parse_response(f"```json\n{body}\n```", two_chapter_rules).verdict_count == 1
    assert parse_response(f"Here are the results:\n{body}\nDone.", two_chapter_rules).verdict_count == 1


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "I could not complete the review.",
        "[1, 2, 3]",
        json.dumps({"results": []}),
        json.dumps({"validations": "none"}),
        '{"validations": [',
    ],
)
def test_malformed_replies_raise(raw, two_chapter_rules):
    with pytest.raises(MalformedResponse):
        parse_response(raw, two_chapter_rules)


def test_malformed_reply_keeps_excerpt():
    with pytest.raises(MalformedResponse) as exc:
        decode_reply("x" * 2000)
    assert len(exc.value.raw_excerpt) == 500


def test_partial_reply_reports_coverage_gaps(two_chapter_rules):
    res = parse_response(bulk_reply(validation(SLIDING_FEE, EL_SFDP, "COMPLIANT")), two_chapter_rules)

    assert not res.complete
    assert res.verdict_count == 1
    assert len(res.sections[BUDGET]) == 0
    gaps = {g.section: g for g in res.coverage_gaps}
    assert gaps[SLIDING_FEE].expected == 2
    assert gaps[SLIDING_FEE].found == 1
    assert gaps[SLIDING_FEE].missing_elements == [EL_FPG]
    assert gaps[BUDGET].missing_elements == [EL_BUDGET]
    assert res.counts["total"] == 1
    assert res.counts["expected"] == 3


def test_missing_fields_get_placeholders(two_chapter_rules):
    raw = bulk_reply({"section": BUDGET, "element": EL_BUDGET, "status": "COMPLIANT"})
    v = parse_response(raw, two_chapter_rules).sections[BUDGET].compliant[0]
    assert v.evidence_quote == NOT_FOUND_TEXT
    assert v.evidence_location == NOT_FOUND_TEXT
    assert v.evidence_section == NOT_FOUND_TEXT
    assert v.reasoning == "No reasoning provided"
    assert v.requirement_echo == "Annual budget reflects the scope of project."


def test_section_names_are_matched_loosely_and_unknown_sections_kept(two_chapter_rules):
    raw = bulk_reply(
        validation("sliding fee discount program", EL_SFDP, "COMPLIANT"),
        validation("Quality Improvement", "Element a - QI/QA Program", "COMPLIANT"),
    )
    res = parse_response(raw, two_chapter_rules)
    assert len(res.sections[SLIDING_FEE].compliant) == 1
    assert len(res.sections["Quality Improvement"].compliant) == 1
    assert res.verdict_count == 2


def test_duplicate_validations_are_ignored(two_chapter_rules):
    raw = bulk_reply(
        validation(SLIDING_FEE, EL_SFDP, "COMPLIANT"),
        validation(SLIDING_FEE, "REQUIREMENT 1.1: " + EL_SFDP, "NON_COMPLIANT"),
    )
    sf = parse_response(raw, two_chapter_rules).sections[SLIDING_FEE]
    assert len(sf.compliant) == 1
    assert len(sf.non_compliant) == 0


def test_list_evidence_is_joined(two_chapter_rules):
    raw = bulk_reply(validation(BUDGET, EL_BUDGET, "COMPLIANT", evidence=['"Total budget"', '"Federal share"']))
    v = parse_response(raw, two_chapter_rules).sections[BUDGET].compliant[0]
    assert v.evidence_quote == '"Total budget" "Federal share"'


def test_bare_page_number_location(two_chapter_rules):
    raw = bulk_reply(validation(BUDGET, EL_BUDGET, "COMPLIANT", evidenceLocation=5))
    assert parse_response(raw, two_chapter_rules).sections[BUDGET].compliant[0].evidence_location == "Page 5"
    raw = bulk_reply(validation(BUDGET, EL_BUDGET, "COMPLIANT", evidenceLocation="Attachment 9, p. 4"))
    v = parse_response(raw, two_chapter_rules).sections[BUDGET].compliant[0]
    assert v.evidence_location == "Attachment 9, p. 4"


def test_chapter_reply_repairs_truncated_labels(two_chapter_rules):
    chapter = two_chapter_rules[0]
    raw = json.dumps(
        {
            "compliantItems": [{"element": "Element b", "evidence": '"Board approved"', "evidenceLocation": "Page 40"}],
            "nonCompliantItems": [{"element": EL_FPG, "reasoning": "Schedule uses 2019 guidelines."}],
            "notApplicableItems": [],
        }
    )
    verdicts, gap = parse_chapter_response(raw, chapter)
    assert gap is None
    assert [v.element for v in verdicts.compliant] == [EL_SFDP]
    assert verdicts.compliant[0].evidence_location == "Page 40"
    assert [v.status for v in verdicts.non_compliant] == [NON_COMPLIANT]


def test_chapter_reply_with_missing_element_reports_gap(two_chapter_rules):
    chapter = two_chapter_rules[0]
    raw = json.dumps({"compliantItems": [{"element": EL_SFDP}]})
    verdicts, gap = parse_chapter_response(raw, chapter)
    assert len(verdicts) == 1
    assert gap is not None
    assert gap.missing_elements == [EL_FPG]


def test_chapter_reply_without_buckets_is_malformed(two_chapter_rules):
    with pytest.raises(MalformedResponse):
        parse_chapter_response(json.dumps({"validations": []}), two_chapter_rules[1])
