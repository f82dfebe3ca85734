from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from hrsa_review.models import ComplianceChapter, ComplianceElement, RuleSet

SLIDING_FEE = "Sliding Fee Discount Program"
BUDGET = "Budget"

EL_SFDP = "Element b - Sliding Fee Discount Program Policies"
EL_FPG = "Element e - Incorporation of Current Federal Poverty Guidelines (FPG)"
EL_BUDGET = "Element a - Budgeting for Scope of Project"


@pytest.fixture
def two_chapter_rules() -> List[ComplianceChapter]:
    return [
        ComplianceChapter(
            chapter_title="Chapter 9: Sliding Fee Discount Program",
            section_name=SLIDING_FEE,
            authority_citation="Section 330(k)(3)(G) of the PHS Act",
            elements=[
                ComplianceElement(
                    element_label=EL_SFDP,
                    requirement_text="Board-approved sliding fee discount program policies.",
                    must_address_items=["Definitions of income", "Definitions of family size"],
                ),
                ComplianceElement(
                    element_label=EL_FPG,
                    requirement_text="Schedule is based on the most recent Federal Poverty Guidelines.",
                ),
            ],
        ),
        ComplianceChapter(
            chapter_title="Chapter 17: Budget",
            section_name=BUDGET,
            elements=[
                ComplianceElement(
                    element_label=EL_BUDGET,
                    requirement_text="Annual budget reflects the scope of project.",
                    review_hint="SF-424A; Budget Narrative",
                ),
            ],
        ),
    ]


@pytest.fixture
def rule_set(two_chapter_rules) -> RuleSet:
    return RuleSet(rules=two_chapter_rules, version_label="2026")


def validation(section: str, element: str, status: str, **extra: Any) -> Dict[str, Any]:
    item = {
        "section": section,
        "element": element,
        "status": status,
        "evidence": f'"{element} evidence"',
        "evidenceLocation": "Page 12",
        "evidenceSection": "Attachment D",
        "reasoning": "Explicit text found.",
    }
    item.update(extra)
    return item


def bulk_reply(*items: Dict[str, Any]) -> str:
    return json.dumps({"validations": list(items)})
