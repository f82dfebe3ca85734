from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Set

from .errors import AmbiguousElementMatch

# Element names drifted apart between the compliance manual and the
# project-officer review sheets. Left side: rule-set label, right side:
# manual-review label. Extend through the `comparison.element_aliases`
# block of the run configuration.
DEFAULT_ELEMENT_ALIASES: Dict[str, str] = {
    "Element a - Budgeting for Scope of Project": "a. Annual Budgeting for Scope of Project",
    "Element b - Documentation of Key Management Staff Positions": "b. Documentation for Key Management Staff Positions",
}

_PREFIX_RES = [
    re.compile(r"^REQUIREMENT\s*#?\s*\d+(?:\.\d+)*\s*[:.\-–—]?\s*", re.IGNORECASE),
    re.compile(r"^Element\s+[A-Za-z]\s*[:.\-–—]\s*", re.IGNORECASE),
    re.compile(r"^\d+(?:\.\d+)*\s*[:.\-–—)]\s*"),
    re.compile(r"^[A-Za-z][.)]\s+"),
]

_SUFFIX_RES = [
    re.compile(r"\s*\(FPG\)\s*$", re.IGNORECASE),
    re.compile(r"\s*\(Not Applicable for Look[\s-]*Alikes?\)\s*$", re.IGNORECASE),
]

_LETTER_RE = re.compile(r"^\s*(?:REQUIREMENT\s*#?\s*[\d.]+\s*[:.\-–—]?\s*)?(?:Element\s+)?([a-h])\s*[:.\-–—)]", re.IGNORECASE)

EXACT = 3
ALIAS = 2
LETTER = 1
NO_MATCH = 0


def canonical_element(label: Optional[str]) -> str:
    """
    Identity key of an element label: numbering prefixes ("REQUIREMENT 1.2: ",
    "1.2 - ", "Element b - ", "b. ") and non-semantic suffixes ("(FPG)",
    "(Not Applicable for Look-Alikes)") removed, lowercased, whitespace collapsed.
    """
    s = re.sub(r"\s+", " ", str(label or "")).strip()

    changed = True
    while changed and s:
        changed = False
        for rx in _PREFIX_RES:
            new = rx.sub("", s, count=1)
            if new != s and new.strip():
                s = new.strip()
                changed = True
        for rx in _SUFFIX_RES:
            new = rx.sub("", s, count=1)
            if new != s and new.strip():
                s = new.strip()
                changed = True

    return s.lower()


def element_letter(label: Optional[str]) -> Optional[str]:
    m = _LETTER_RE.match(str(label or ""))
    return m.group(1).lower() if m else None


def _canonical_section(section: Optional[str]) -> str:
    return re.sub(r"\s+", " ", str(section or "")).strip().lower()


def sections_agree(a: Optional[str], b: Optional[str]) -> bool:
    ca, cb = _canonical_section(a), _canonical_section(b)
    if not ca or not cb:
        return False
    return ca == cb or ca in cb or cb in ca


@dataclass
class MatchOutcome:
    index: Optional[int]
    strength: int = NO_MATCH
    ambiguous_with: List[int] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.index is not None

    @property
    def ambiguous(self) -> bool:
        return bool(self.ambiguous_with)


class ElementMatcher:
    """
    Decides whether two independently written element labels name the same
    compliance element.

    Strength order: exact canonical form, then alias table, then the bare
    "Element <letter>" fallback. The letter fallback only counts when both
    sides carry the same section, since letters repeat across chapters.
    """

    def __init__(self, aliases: Optional[Mapping[str, str]] = None, letter_fallback: bool = True):
        table = dict(DEFAULT_ELEMENT_ALIASES)
        table.update(aliases or {})
        self.aliases = table
        self.letter_fallback = letter_fallback
        self._pairs: Set[FrozenSet[str]] = set()
        for a, b in table.items():
            ca, cb = canonical_element(a), canonical_element(b)
            if ca and cb and ca != cb:
                self._pairs.add(frozenset((ca, cb)))

    def elements_match(self, a: str, b: str) -> bool:
        return self.strength(a, b) >= ALIAS

    def strength(self, a: str, b: str, section_a: Optional[str] = None, section_b: Optional[str] = None) -> int:
        ca, cb = canonical_element(a), canonical_element(b)
        if ca and ca == cb:
            return EXACT
        if frozenset((ca, cb)) in self._pairs:
            return ALIAS
        if self.letter_fallback and sections_agree(section_a, section_b):
            la, lb = element_letter(a), element_letter(b)
            if la and la == lb:
                return LETTER
        return NO_MATCH

    def resolve(
        self,
        label: str,
        candidates: Sequence[str],
        section: Optional[str] = None,
        candidate_sections: Optional[Sequence[Optional[str]]] = None,
        strict: bool = False,
        skip: Optional[Set[int]] = None,
    ) -> MatchOutcome:
        """
        Index of the best-matching candidate label. Indices in `skip` are not
        considered.

        Ties at the best strength are reported in `ambiguous_with` (the first
        one wins), or raise AmbiguousElementMatch when `strict` is set.
        """
        best = NO_MATCH
        hits: List[int] = []
        for i, cand in enumerate(candidates):
            if skip and i in skip:
                continue
            cand_section = candidate_sections[i] if candidate_sections is not None else None
            s = self.strength(label, cand, section, cand_section)
            if s == NO_MATCH:
                continue
            if s > best:
                best, hits = s, [i]
            elif s == best:
                hits.append(i)

        if not hits:
            return MatchOutcome(index=None)
        if len(hits) > 1:
            if strict:
                raise AmbiguousElementMatch(label, [candidates[i] for i in hits])
            logging.warning("Ambiguous element match for %r: %d candidates, using %r", label, len(hits), candidates[hits[0]])
        return MatchOutcome(index=hits[0], strength=best, ambiguous_with=hits[1:])


_DEFAULT_MATCHER = ElementMatcher()


def resolve_element_identity(label: str) -> str:
    return canonical_element(label)


def elements_match(a: str, b: str) -> bool:
    return _DEFAULT_MATCHER.elements_match(a, b)
