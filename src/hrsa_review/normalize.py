from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Union

# Upstream page boundaries, e.g. "========== PAGE 12 ==========" or
# "========== PAGE 12 (from PDF footer) ==========". These survive
# normalization in the canonical form "====== PAGE 12 ======".
PAGE_MARKER_RE = re.compile(
    r"^[ \t]*={6,}[ \t]+PAGE (\d+)(?:[ \t]*\([^)\n]*\))?[ \t]+={6,}[ \t]*$",
    re.MULTILINE,
)

_PLACEHOLDER = "\x00PAGEMARK{}\x00"
_PLACEHOLDER_RE = re.compile(r"\x00PAGEMARK(\d+)\x00")

_STEPS = [
    (re.compile(r"={10,}"), ""),
    (re.compile(r"Page \d+ of \d+", re.IGNORECASE), ""),
    (re.compile(r"\bPAGE \d+", re.IGNORECASE), ""),
    (re.compile(r"Page Number:\s*\d+", re.IGNORECASE), ""),
    (re.compile(r"Tracking Number[^\n]*", re.IGNORECASE), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
    (re.compile(r"[ \t]{2,}"), " "),
    (re.compile(r"^\s+$", re.MULTILINE), ""),
    (re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}"), ""),
    (re.compile(r"[│┤├┼─┌┐└┘]"), " "),
    (re.compile(r"\[TEXT\]\s*"), ""),
    (re.compile(r"\[TABLE[^\]\n]*\]:\s*"), "TABLE: "),
    (re.compile(r"_{5,}"), ""),
    (re.compile(r"-{5,}"), ""),
    (re.compile(r"\.{5,}"), ""),
    (re.compile(r"  +"), " "),
    (re.compile(r"\n "), "\n"),
]

ANNOUNCEMENT_RE = re.compile(r"HRSA[-\s](\d{2})[-\s]\d{3}", re.IGNORECASE)
APPLICATION_NUMBER_RE = re.compile(r"(\d{6})")


def _compress_once(text: str) -> str:
    text = PAGE_MARKER_RE.sub(lambda m: "\n" + _PLACEHOLDER.format(m.group(1)) + "\n", text)
    for pattern, repl in _STEPS:
        text = pattern.sub(repl, text)
    lines = [ln.strip() for ln in text.split("\n")]
    text = "\n".join(ln for ln in lines if ln)
    text = _PLACEHOLDER_RE.sub(lambda m: f"====== PAGE {m.group(1)} ======", text)
    return text.strip()


def normalize_text(raw_text: Optional[str]) -> str:
    """
    Shrink extracted application text before it goes into a prompt.

    Layout noise (separators, footers, dates, box-drawing glyphs, [TEXT] tags)
    is removed; content and the explicit page markers are kept so page
    citations in the reply can still be traced.

    One rule can expose a match for an earlier one (removing "_____" between
    two runs of "=" leaves a separator), so the rules are reapplied until the
    text stops changing. Every pass either shortens the text or only swaps
    box-drawing glyphs for spaces, which bounds the loop.
    """
    if not raw_text:
        return ""

    text = str(raw_text).replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    while True:
        out = _compress_once(text)
        if out == text:
            return out
        text = out


def reduction_percent(before: str, after: str) -> float:
    if not before:
        return 0.0
    return round((1 - len(after) / len(before)) * 100, 1)


def estimate_tokens(text: str) -> int:
    # ~4 characters per token for English prose
    return (len(text or "") + 3) // 4


def detect_announcement_year(text: Optional[str]) -> Optional[str]:
    """Two-digit year of the first HRSA-YY-NNN announcement number in `text`."""
    if not text:
        return None
    m = ANNOUNCEMENT_RE.search(text)
    return m.group(1) if m else None


def extract_application_number(filename: Union[str, Path]) -> Optional[str]:
    m = APPLICATION_NUMBER_RE.search(Path(filename).name)
    return m.group(1) if m else None
