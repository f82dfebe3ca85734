from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .util import page_location, text_value

COMPLIANT = "COMPLIANT"
NON_COMPLIANT = "NON_COMPLIANT"
NOT_APPLICABLE = "NOT_APPLICABLE"
UNKNOWN = "UNKNOWN"
NOT_FOUND = "NOT_FOUND"

VERDICT_STATUSES = (COMPLIANT, NON_COMPLIANT, NOT_APPLICABLE)

MATCH = "MATCH"
MISMATCH = "MISMATCH"
MISSING_IN_MANUAL = "MISSING_IN_MANUAL"
MISSING_IN_AI = "MISSING_IN_AI"

NOT_SPECIFIED = "Not specified"
NOT_FOUND_TEXT = "Not found"


def _str_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None and str(v).strip()]


@dataclass(frozen=True)
class ComplianceElement:
    element_label: str
    requirement_text: str
    must_address_items: List[str] = field(default_factory=list)
    review_hint: Optional[str] = None
    checklist_items: Optional[List[str]] = None
    applicability_note: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ComplianceElement":
        # rule files use the keys written by the manual-extraction tooling
        checklist = d.get("applicationItems", d.get("checklist_items"))
        return cls(
            element_label=str(d.get("element") or d.get("element_label") or "Compliance Requirement").strip(),
            requirement_text=str(d.get("requirementText") or d.get("requirement_text") or "").strip(),
            must_address_items=_str_list(d.get("requirementDetails", d.get("must_address_items"))),
            review_hint=(str(d.get("applicationSection") or d.get("review_hint") or "").strip() or None),
            checklist_items=(_str_list(checklist) if checklist else None),
            applicability_note=(str(d.get("footnotes") or d.get("applicability_note") or "").strip() or None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element": self.element_label,
            "requirementText": self.requirement_text,
            "requirementDetails": list(self.must_address_items),
            "applicationSection": self.review_hint,
            "applicationItems": list(self.checklist_items) if self.checklist_items is not None else None,
            "footnotes": self.applicability_note,
        }


@dataclass(frozen=True)
class ComplianceChapter:
    chapter_title: str
    section_name: str
    authority_citation: Optional[str] = None
    elements: List[ComplianceElement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ComplianceChapter":
        section = str(d.get("section") or d.get("section_name") or "").strip()
        title = str(d.get("chapter") or d.get("chapter_title") or section).strip()
        elements = [ComplianceElement.from_dict(e) for e in (d.get("elements") or []) if isinstance(e, dict)]
        return cls(
            chapter_title=title,
            section_name=section,
            authority_citation=(str(d.get("authority") or "").strip() or None),
            elements=elements,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapter": self.chapter_title,
            "section": self.section_name,
            "authority": self.authority_citation,
            "elements": [e.to_dict() for e in self.elements],
        }

    def find_element(self, label: str) -> Optional[ComplianceElement]:
        for e in self.elements:
            if e.element_label == label:
                return e
        return None


@dataclass(frozen=True)
class RuleSet:
    rules: List[ComplianceChapter]
    version_label: str

    @property
    def requirement_count(self) -> int:
        return sum(len(c.elements) for c in self.rules)


@dataclass(frozen=True)
class ValidationVerdict:
    element: str
    requirement_echo: str
    status: str
    evidence_quote: str = NOT_FOUND_TEXT
    evidence_location: str = NOT_FOUND_TEXT
    evidence_section: Optional[str] = NOT_FOUND_TEXT
    reasoning: str = "No reasoning provided"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element": self.element,
            "requirement": self.requirement_echo,
            "status": self.status,
            "evidence": self.evidence_quote,
            "evidenceLocation": self.evidence_location,
            "evidenceSection": self.evidence_section,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any], status: Optional[str] = None) -> "ValidationVerdict":
        return cls(
            element=text_value(d.get("element"), "Unknown"),
            requirement_echo=text_value(d.get("requirement"), NOT_SPECIFIED),
            status=str(status or d.get("status") or NON_COMPLIANT),
            evidence_quote=text_value(d.get("evidence"), NOT_FOUND_TEXT),
            evidence_location=page_location(d.get("evidenceLocation"), NOT_FOUND_TEXT),
            evidence_section=text_value(d.get("evidenceSection"), NOT_FOUND_TEXT),
            reasoning=text_value(d.get("reasoning"), "No reasoning provided"),
        )


@dataclass
class SectionVerdicts:
    compliant: List[ValidationVerdict] = field(default_factory=list)
    non_compliant: List[ValidationVerdict] = field(default_factory=list)
    not_applicable: List[ValidationVerdict] = field(default_factory=list)
    error: Optional[str] = None

    def add(self, verdict: ValidationVerdict) -> None:
        if verdict.status == COMPLIANT:
            self.compliant.append(verdict)
        elif verdict.status == NOT_APPLICABLE:
            self.not_applicable.append(verdict)
        else:
            self.non_compliant.append(verdict)

    def all(self) -> List[ValidationVerdict]:
        return [*self.compliant, *self.non_compliant, *self.not_applicable]

    def __len__(self) -> int:
        return len(self.compliant) + len(self.non_compliant) + len(self.not_applicable)

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {
            "compliantItems": [v.to_dict() for v in self.compliant],
            "nonCompliantItems": [v.to_dict() for v in self.non_compliant],
            "notApplicableItems": [v.to_dict() for v in self.not_applicable],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SectionVerdicts":
        if d.get("error"):
            return cls(error=str(d["error"]))
        # older result files use compliant/nonCompliant/notApplicable
        return cls(
            compliant=[ValidationVerdict.from_dict(x, COMPLIANT) for x in d.get("compliantItems", d.get("compliant")) or []],
            non_compliant=[ValidationVerdict.from_dict(x, NON_COMPLIANT) for x in d.get("nonCompliantItems", d.get("nonCompliant")) or []],
            not_applicable=[ValidationVerdict.from_dict(x, NOT_APPLICABLE) for x in d.get("notApplicableItems", d.get("notApplicable")) or []],
        )


@dataclass(frozen=True)
class StructuralMismatch:
    """A section whose reply covered fewer elements than the rule set demands."""

    section: str
    expected: int
    found: int
    missing_elements: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "expected": self.expected,
            "found": self.found,
            "missingElements": list(self.missing_elements),
        }


@dataclass
class ValidationResult:
    sections: Dict[str, SectionVerdicts] = field(default_factory=dict)
    expected_count: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    coverage_gaps: List[StructuralMismatch] = field(default_factory=list)
    path: str = "bulk"

    @property
    def verdict_count(self) -> int:
        return sum(len(s) for s in self.sections.values())

    @property
    def complete(self) -> bool:
        return not self.coverage_gaps and all(s.error is None for s in self.sections.values())

    def results_dict(self) -> Dict[str, Any]:
        return {name: s.to_dict() for name, s in self.sections.items()}


@dataclass
class ApplicationResult:
    application_number: Optional[str]
    filename: str
    rule_year: str
    announcement_year: Optional[str]
    validation: ValidationResult
    timestamp: str = ""

    @staticmethod
    def now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applicationNumber": self.application_number,
            "filename": self.filename,
            "timestamp": self.timestamp or ApplicationResult.now_iso(),
            "ruleYear": self.rule_year,
            "announcementYear": self.announcement_year,
            "validationPath": self.validation.path,
            "coverage": {
                "expected": self.validation.expected_count,
                "found": self.validation.verdict_count,
                "gaps": [g.to_dict() for g in self.validation.coverage_gaps],
            },
            "counts": dict(self.validation.counts),
            "results": self.validation.results_dict(),
        }


@dataclass(frozen=True)
class ManualReviewEntry:
    element_label: str
    raw_status_text: str
    section: Optional[str] = None
    comments: Optional[str] = None


@dataclass
class ComparisonRecord:
    application_id: str
    section: str
    element: str
    ai_status: str
    manual_status: str
    match_result: str
    ai_evidence: str = ""
    ai_reasoning: str = ""
    manual_comment: str = ""
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applicationNumber": self.application_id,
            "section": self.section,
            "element": self.element,
            "aiStatus": self.ai_status,
            "manualStatus": self.manual_status,
            "match": self.match_result,
            "aiReasoning": self.ai_reasoning,
            "aiEvidence": self.ai_evidence,
            "manualComment": self.manual_comment,
            "notes": self.notes,
        }


@dataclass
class ComparisonStats:
    total: int = 0
    matching: int = 0
    mismatching: int = 0
    missing_in_manual: int = 0
    missing_in_ai: int = 0
    ambiguous: List[str] = field(default_factory=list)

    @property
    def success_rate_percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(self.matching / self.total * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "matching": self.matching,
            "mismatching": self.mismatching,
            "missingInManual": self.missing_in_manual,
            "missingInAI": self.missing_in_ai,
            "successRatePercent": self.success_rate_percent,
            "ambiguous": list(self.ambiguous),
        }


@dataclass
class ApplicationComparison:
    application_id: str
    records: List[ComparisonRecord] = field(default_factory=list)
    stats: ComparisonStats = field(default_factory=ComparisonStats)
