from __future__ import annotations

from typing import Dict, List, Sequence

from .models import ComplianceChapter, ComplianceElement

RULE = "═" * 63

SYSTEM_MESSAGE = "You are a compliance analyst for HRSA health center applications."

STATUS_RULES = """STATUS RULES:
- COMPLIANT: Clear explicit proof found in the application text
- NON_COMPLIANT: No evidence, or evidence that is partial or incomplete
- NOT_APPLICABLE: Only if the element's NOTES state an N/A condition (e.g. "Select 'N/A' if...") AND the application text shows that condition is met"""

NO_HALLUCINATION = """CRITICAL - NO HALLUCINATION:
- ONLY use information EXPLICITLY in the application
- NEVER assume, infer, or guess
- If no explicit evidence is found, mark NON_COMPLIANT (never an inferred COMPLIANT)
- Same application = same result"""


def count_requirements(rules: Sequence[ComplianceChapter]) -> int:
    return sum(len(ch.elements) for ch in rules)


def _element_block(number: str, section: str, element: ComplianceElement) -> str:
    lines = [
        f"REQUIREMENT #{number}",
        f"SECTION: {section}",
        f"ELEMENT: {element.element_label}",
        f"REQUIREMENT: {element.requirement_text}",
    ]
    if element.must_address_items:
        lines.append(f"MUST ADDRESS: {'; '.join(element.must_address_items)}")
    if element.review_hint:
        lines.append(f"REVIEW HINT (for humans, search the whole application): {element.review_hint}")
    if element.applicability_note:
        lines.append(f"NOTES: {element.applicability_note}")
    return "\n".join(lines)


def _chapter_block(index: int, chapter: ComplianceChapter) -> str:
    elements = "\n\n".join(
        _element_block(f"{index}.{j}", chapter.section_name, el)
        for j, el in enumerate(chapter.elements, start=1)
    )
    return "\n".join(
        [
            RULE,
            f"SECTION {index}: {chapter.section_name}",
            RULE,
            f"CHAPTER: {chapter.chapter_title or chapter.section_name}",
            f"AUTHORITY: {chapter.authority_citation or 'N/A'}",
            f"ELEMENTS TO VALIDATE: {len(chapter.elements)}",
            "",
            elements,
        ]
    )


def build_prompt(rules: Sequence[ComplianceChapter], document_text: str) -> str:
    """
    One prompt covering every element of every chapter.

    The stated requirement count equals the number of elements in `rules`;
    the reply parser relies on it to detect incomplete answers.
    """
    total = count_requirements(rules)
    chapters = "\n\n".join(_chapter_block(i, ch) for i, ch in enumerate(rules, start=1))

    return f"""You are validating HRSA compliance for a health center application.

You will validate exactly {total} requirements across {len(rules)} sections in ONE analysis.

{chapters}

{RULE}
VALIDATION INSTRUCTIONS
{RULE}

{NO_HALLUCINATION}

VALIDATION STEPS:
1. For EACH requirement, search the ENTIRE application
2. Check N/A conditions FIRST (only if NOTES say "Select 'N/A' if...")
3. Find direct quotes proving compliance
4. Validate ALL "Must Address" items
5. Document findings concisely

{STATUS_RULES}

EVIDENCE:
- Quote 1-3 KEY sentences in "quotation marks"
- Include page numbers from the "====== PAGE N ======" markers
- 3-4 sentence reasoning

APPLICATION CONTENT:
{document_text}

{RULE}
RESPONSE FORMAT
{RULE}

Return JSON with a validations array containing {total} results:

{{
  "validations": [
    {{
      "section": "Section name exactly as given after SECTION N:",
      "requirementNumber": "1.1",
      "element": "Element name exactly as given after ELEMENT:",
      "status": "COMPLIANT|NON_COMPLIANT|NOT_APPLICABLE",
      "evidence": "Direct quotes or 'Not found'",
      "evidenceLocation": "Page X or 'Not found'",
      "evidenceSection": "Document, attachment or section name where the evidence was found, or 'Not found'",
      "reasoning": "3-4 sentences"
    }}
  ]
}}

CRITICAL: Return exactly {total} validation objects."""


def build_chapter_prompt(chapter: ComplianceChapter, document_text: str) -> str:
    """Prompt for the slower one-chapter-per-call path."""
    requirements = "\n".join(
        f"{i}. {el.element_label}: {el.requirement_text}"
        + (f" (NOTES: {el.applicability_note})" if el.applicability_note else "")
        for i, el in enumerate(chapter.elements, start=1)
    )
    return f"""You are analyzing a health center application for compliance with HRSA requirements.

SECTION: {chapter.section_name}

REQUIREMENTS TO CHECK:
{requirements}

{NO_HALLUCINATION}

{STATUS_RULES}

APPLICATION TEXT:
{document_text}

For each requirement listed above, determine whether it is COMPLIANT, NON_COMPLIANT or NOT_APPLICABLE,
the evidence that supports the determination, and the reasoning.

IMPORTANT: The "element" field MUST contain the COMPLETE element name exactly as shown in the list above.

Return a JSON object with this exact structure:
{{
  "compliantItems": [{{"element": "FULL element name", "evidence": "direct quotes", "evidenceLocation": "Page X", "reasoning": "analysis"}}],
  "nonCompliantItems": [{{"element": "FULL element name", "evidence": "quotes or 'Not found'", "evidenceLocation": "Page X or 'Not found'", "reasoning": "analysis"}}],
  "notApplicableItems": [{{"element": "FULL element name", "evidence": "why not applicable", "evidenceLocation": "Page X", "reasoning": "analysis"}}]
}}"""


def build_messages(prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_MESSAGE},
        {"role": "user", "content": prompt},
    ]
