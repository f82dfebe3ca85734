from __future__ import annotations

import re
from typing import Any, Optional

from .models import COMPLIANT, NON_COMPLIANT, NOT_APPLICABLE, UNKNOWN

_NON_COMPLIANT_RE = re.compile(r"non[\s_-]*compliant|not\s+compliant|does\s+not\s+demonstrate", re.IGNORECASE)
_NOT_APPLICABLE_RE = re.compile(r"\bn/a\b|not[\s_-]+applicable", re.IGNORECASE)
_COMPLIANT_RE = re.compile(r"\byes\b|compliant|demonstrates\s+compliance", re.IGNORECASE)
# "no" anywhere ("Not met", "None provided", "Noncompliance") except inside "unknown"
_NO_RE = re.compile(r"no(?!wn)", re.IGNORECASE)


def normalize_status(raw: Optional[Any]) -> str:
    """
    Map a free-form status ("Yes, the health center...", "N/A", "COMPLIANT",
    "C", ...) onto COMPLIANT / NON_COMPLIANT / NOT_APPLICABLE, or UNKNOWN.

    The "Yes," / "No," prefix checks run first: reviewer prose such as
    "No, the sliding fee schedule does not demonstrate compliance" must not
    reach the substring rules.
    """
    if raw is None:
        return UNKNOWN
    s = str(raw).strip()
    if not s:
        return UNKNOWN

    low = s.lower()
    if low.startswith("yes,"):
        return COMPLIANT
    if low.startswith("no,"):
        return NON_COMPLIANT

    if low in {"c", "yes", "compliant"}:
        return COMPLIANT
    if low in {"nc", "no"}:
        return NON_COMPLIANT
    if low in {"na", "n/a"}:
        return NOT_APPLICABLE

    # negated forms contain "compliant" too, so they go first
    if _NON_COMPLIANT_RE.search(s):
        return NON_COMPLIANT
    if _NOT_APPLICABLE_RE.search(s):
        return NOT_APPLICABLE
    if _COMPLIANT_RE.search(s):
        return COMPLIANT
    if _NO_RE.search(s):
        return NON_COMPLIANT
    return UNKNOWN


def canonical_verdict(raw: Optional[Any]) -> Optional[str]:
    """Taxonomy value of an LLM status string ("Non-Compliant" -> NON_COMPLIANT), or None."""
    s = re.sub(r"[\s-]+", "_", str(raw or "").strip().upper())
    if s in (COMPLIANT, NON_COMPLIANT, NOT_APPLICABLE):
        return s
    return None
