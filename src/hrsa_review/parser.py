from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import MalformedResponse
from .matching import ElementMatcher, canonical_element
from .models import (
    COMPLIANT,
    NON_COMPLIANT,
    NOT_APPLICABLE,
    NOT_FOUND_TEXT,
    NOT_SPECIFIED,
    ComplianceChapter,
    SectionVerdicts,
    StructuralMismatch,
    ValidationResult,
    ValidationVerdict,
)
from .schema_validate import CHAPTER_RESPONSE_SCHEMA, check_reply_shape
from .status import canonical_verdict
from .util import page_location, text_value

_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fence(raw: str) -> str:
    text = (raw or "").strip()
    m = _FENCE_RE.match(text)
    return m.group(1).strip() if m else text


def decode_reply(raw: str) -> Dict[str, Any]:
    """JSON object from an LLM reply, tolerating code fences and surrounding prose."""
    text = strip_code_fence(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        m = _OBJECT_RE.search(text)
        if not m:
            raise MalformedResponse("LLM reply is not valid JSON", raw)
        try:
            data = json.loads(m.group(0))
        except json.JSONDecodeError as e:
            raise MalformedResponse(f"LLM reply is not valid JSON: {e}", raw) from e
    if not isinstance(data, dict):
        raise MalformedResponse(f"LLM reply is a JSON {type(data).__name__}, expected an object", raw)
    return data


def _make_verdict(item: Dict[str, Any], status: str, chapter: Optional[ComplianceChapter]) -> ValidationVerdict:
    label = text_value(item.get("element"), "Unknown")
    requirement = None
    if chapter is not None:
        el = chapter.find_element(label)
        if el is None:
            key = canonical_element(label)
            el = next((e for e in chapter.elements if canonical_element(e.element_label) == key), None)
        if el is not None:
            requirement = el.requirement_text
    return ValidationVerdict(
        element=label,
        requirement_echo=requirement or text_value(item.get("requirement"), NOT_SPECIFIED if label == "Unknown" else label),
        status=status,
        evidence_quote=text_value(item.get("evidence"), NOT_FOUND_TEXT),
        evidence_location=page_location(item.get("evidenceLocation"), NOT_FOUND_TEXT),
        evidence_section=text_value(item.get("evidenceSection"), NOT_FOUND_TEXT),
        reasoning=text_value(item.get("reasoning"), "No reasoning provided"),
    )


def _section_for(name: str, rules: Sequence[ComplianceChapter]) -> Optional[ComplianceChapter]:
    for ch in rules:
        if ch.section_name == name:
            return ch
    low = name.strip().lower()
    if not low:
        return None
    for ch in rules:
        sec = ch.section_name.lower()
        if sec in low or low in sec:
            return ch
    return None


def coverage_gap(chapter: ComplianceChapter, verdicts: SectionVerdicts) -> Optional[StructuralMismatch]:
    got = {canonical_element(v.element) for v in verdicts.all()}
    missing = [e.element_label for e in chapter.elements if canonical_element(e.element_label) not in got]
    if not missing:
        return None
    return StructuralMismatch(
        section=chapter.section_name,
        expected=len(chapter.elements),
        found=len(chapter.elements) - len(missing),
        missing_elements=missing,
    )


def verdict_counts(sections: Dict[str, SectionVerdicts], expected: int, unrecognized: int) -> Dict[str, int]:
    return {
        "expected": expected,
        "total": sum(len(s) for s in sections.values()),
        "compliant": sum(len(s.compliant) for s in sections.values()),
        "nonCompliant": sum(len(s.non_compliant) for s in sections.values()),
        "notApplicable": sum(len(s.not_applicable) for s in sections.values()),
        "unrecognizedStatus": unrecognized,
    }


def parse_response(raw: str, rules: Sequence[ComplianceChapter]) -> ValidationResult:
    """
    Bucket a bulk reply ({"validations": [...]}) into per-section verdicts.

    Every rule-set section gets an entry, empty if the reply skipped it.
    Elements the reply did not cover are recorded as coverage gaps rather
    than invented; an unrecognised status becomes NON_COMPLIANT.
    Raises MalformedResponse for non-JSON or wrongly shaped replies.
    """
    data = decode_reply(raw)
    check_reply_shape(data, raw)

    sections: Dict[str, SectionVerdicts] = {ch.section_name: SectionVerdicts() for ch in rules}
    seen: set = set()
    unrecognized = 0

    for item in data.get("validations") or []:
        if not isinstance(item, dict):
            continue
        section_name = text_value(item.get("section"), "Unknown")
        chapter = _section_for(section_name, rules)
        key_section = chapter.section_name if chapter is not None else section_name

        status = canonical_verdict(item.get("status"))
        if status is None:
            unrecognized += 1
            logging.warning("Unrecognised status %r for %r in %s; treating as NON_COMPLIANT", item.get("status"), item.get("element"), key_section)
            status = NON_COMPLIANT

        verdict = _make_verdict(item, status, chapter)
        if verdict.element != "Unknown":
            dedupe_key = (key_section, canonical_element(verdict.element))
            if dedupe_key in seen:
                logging.warning("Duplicate validation for %r in %s ignored", verdict.element, key_section)
                continue
            seen.add(dedupe_key)

        if chapter is None:
            logging.warning("Validation for %r names unknown section %r", verdict.element, section_name)
        sections.setdefault(key_section, SectionVerdicts()).add(verdict)

    expected = sum(len(ch.elements) for ch in rules)
    gaps: List[StructuralMismatch] = []
    for ch in rules:
        sv = sections[ch.section_name]
        if not len(sv) and ch.elements:
            logging.warning("Reply has no validations for section %s", ch.section_name)
        gap = coverage_gap(ch, sv)
        if gap is not None:
            logging.warning(
                "Coverage gap in %s: %d of %d elements validated, missing %s",
                gap.section, gap.found, gap.expected, gap.missing_elements,
            )
            gaps.append(gap)
        logging.info(
            "  %s: %d compliant, %d non-compliant, %d N/A",
            ch.section_name, len(sv.compliant), len(sv.non_compliant), len(sv.not_applicable),
        )

    counts = verdict_counts(sections, expected, unrecognized)
    if counts["total"] != expected:
        logging.warning("Reply returned %d validations, %d requirements were requested", counts["total"], expected)
    logging.info(
        "Processed %d validations: %d compliant, %d non-compliant, %d N/A",
        counts["total"], counts["compliant"], counts["nonCompliant"], counts["notApplicable"],
    )

    return ValidationResult(sections=sections, expected_count=expected, counts=counts, coverage_gaps=gaps, path="bulk")


def _repair_label(label: str, chapter: ComplianceChapter, matcher: ElementMatcher) -> str:
    labels = [e.element_label for e in chapter.elements]
    outcome = matcher.resolve(label, labels, chapter.section_name, [chapter.section_name] * len(labels))
    if outcome.found:
        fixed = labels[outcome.index]
    else:
        # truncated names ("Element b", "Sliding Fee Discount Program")
        low = label.lower()
        fixed = next((l for l in labels if low and (low in l.lower() or l.lower()[:15] in low)), label)
    if fixed != label:
        logging.warning("Fixed incomplete element name: %r -> %r", label, fixed)
    return fixed


def parse_chapter_response(
    raw: str, chapter: ComplianceChapter, matcher: Optional[ElementMatcher] = None
) -> Tuple[SectionVerdicts, Optional[StructuralMismatch]]:
    """
    Reply of the per-chapter path ({compliantItems, nonCompliantItems,
    notApplicableItems}). The bucket decides the status; element names are
    repaired against the chapter's labels.
    """
    data = decode_reply(raw)
    check_reply_shape(data, raw, CHAPTER_RESPONSE_SCHEMA)
    matcher = matcher or ElementMatcher()

    verdicts = SectionVerdicts()
    seen: set = set()
    for key, status in (("compliantItems", COMPLIANT), ("nonCompliantItems", NON_COMPLIANT), ("notApplicableItems", NOT_APPLICABLE)):
        for item in data.get(key) or []:
            if not isinstance(item, dict):
                continue
            item = dict(item)
            item["element"] = _repair_label(text_value(item.get("element"), "Unknown"), chapter, matcher)
            verdict = _make_verdict(item, status, chapter)
            if verdict.element != "Unknown":
                k = canonical_element(verdict.element)
                if k in seen:
                    logging.warning("Duplicate validation for %r in %s ignored", verdict.element, chapter.section_name)
                    continue
                seen.add(k)
            verdicts.add(verdict)

    gap = coverage_gap(chapter, verdicts)
    if gap is not None:
        logging.warning(
            "Coverage gap in %s: %d of %d elements validated, missing %s",
            gap.section, gap.found, gap.expected, gap.missing_elements,
        )
    return verdicts, gap
