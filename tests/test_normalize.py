from __future__ import annotations

import random

from hrsa_review.normalize import (
    detect_announcement_year,
    estimate_tokens,
    extract_application_number,
    normalize_text,
    reduction_percent,
)


def test_page_markers_survive_in_canonical_form():
    raw = (
        "========== PAGE 12 (from PDF footer) ==========\n\n"
        "[HEADING] Budget\n\n"
        "[TEXT] The health center budget totals $1,200,000.\n\n"
        "========== PAGE 13 ==========\n\n"
        "[TEXT] Revenue sources are listed in Form 3."
    )
    out = normalize_text(raw)
    assert out.splitlines() == [
        "====== PAGE 12 ======",
        "[HEADING] Budget",
        "The health center budget totals $1,200,000.",
        "====== PAGE 13 ======",
        "Revenue sources are listed in Form 3.",
    ]


def test_strips_footers_dates_and_separators():
    raw = (
        "Sliding fee policy approved\n"
        "Page Number: 37\n"
        "Tracking Number: GRANT13987402\n"
        "Page 3 of 40\n"
        "Signed 01/15/2025\n"
        "Signature ..........\n"
        "____________\n"
        "--------\n"
        "=================="
    )
    out = normalize_text(raw)
    assert out == "Sliding fee policy approved\nSigned\nSignature"


def test_table_tags_and_box_glyphs():
    out = normalize_text("[TABLE 2]: Income│Discount\n[TEXT]   100%   FPG")
    assert out == "TABLE: Income Discount\n100% FPG"


def test_blank_lines_and_whitespace_collapse():
    out = normalize_text("a\n\n\n\n   \n\t\nb    c\r\nd")
    assert out == "a\nb c\nd"


def test_empty_input():
    assert normalize_text("") == ""
    assert normalize_text(None) == ""
    assert normalize_text(" \n\n \t") == ""


_PIECES = [
    "=", "=" * 10, "_", "_" * 6, "-", "-" * 7, ".", "." * 5, " ", "  ", "\t", "\n", "\n\n\n", "\r\n",
    "PAGE 3", "page 9", "Page 2 of 9", "12/31/2024", "│", "─", "┼", "[TEXT] ", "[TABLE 2]: ",
    "Tracking Number: 99", "Page Number: 4", "========== PAGE 7 ==========", "\n====== PAGE 8 ======\n",
    "abc", "Element b - Sliding Fee", "HRSA-26-004", "\x00", "(", ")",
]


def test_idempotent_and_never_longer_on_random_input():
    rng = random.Random(20240131)
    for _ in range(500):
        raw = "".join(rng.choice(_PIECES) for _ in range(rng.randint(0, 60)))
        once = normalize_text(raw)
        assert len(once) <= len(raw)
        assert normalize_text(once) == once


def test_separator_exposed_by_removal_is_also_removed():
    # removing the underscores joins the two "=" runs into one separator
    raw = "text\n=====_____=====\nmore"
    out = normalize_text(raw)
    assert "=" not in out
    assert normalize_text(out) == out


def test_announcement_year_first_match_wins():
    assert detect_announcement_year("Funding Opportunity HRSA-26-004 and HRSA-25-012") == "26"
    assert detect_announcement_year("Announcement hrsa 25 012") == "25"
    assert detect_announcement_year("no announcement here") is None
    assert detect_announcement_year(None) is None


def test_application_number_from_filename():
    assert extract_application_number("Application-242645.pdf") == "242645"
    assert extract_application_number("/some/dir/242645_HRSA.pdf") == "242645"
    assert extract_application_number("application.pdf") is None


def test_reduction_and_token_estimate():
    assert reduction_percent("abcd", "ab") == 50.0
    assert reduction_percent("", "") == 0.0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("") == 0
