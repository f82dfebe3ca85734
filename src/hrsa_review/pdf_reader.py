from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import fitz  # PyMuPDF

# Footer stamped on every page of a submitted application ("Page Number: 37")
FOOTER_PAGE_RE = re.compile(r"Page Number:\s*(\d+)", re.IGNORECASE)
FOOTER_SKIP_RE = re.compile(r"Page Number:\s*\d+|Tracking Number", re.IGNORECASE)

HEADING_SIZE_RATIO = 1.15
BOLD_FLAG = 16


@dataclass
class PageContent:
    index0: int
    label: str
    items: List[str] = field(default_factory=list)

    def render(self) -> str:
        out = [f"========== PAGE {self.label} (from PDF footer) =========="]
        out.extend(self.items)
        return "\n\n".join(out)


def _block_text(block: dict) -> str:
    lines = []
    for line in block.get("lines") or []:
        s = "".join(span.get("text") or "" for span in line.get("spans") or [])
        if s.strip():
            lines.append(s.strip())
    return " ".join(lines)


def _block_size(block: dict) -> float:
    sizes = [float(span.get("size") or 0) for line in block.get("lines") or [] for span in line.get("spans") or []]
    return max(sizes) if sizes else 0.0


def _block_bold(block: dict) -> bool:
    spans = [span for line in block.get("lines") or [] for span in line.get("spans") or [] if (span.get("text") or "").strip()]
    return bool(spans) and all(int(span.get("flags") or 0) & BOLD_FLAG for span in spans)


def _body_size(blocks: List[dict]) -> float:
    c: Counter = Counter()
    for b in blocks:
        for line in b.get("lines") or []:
            for span in line.get("spans") or []:
                t = (span.get("text") or "").strip()
                if t:
                    c[round(float(span.get("size") or 0), 1)] += len(t)
    return c.most_common(1)[0][0] if c else 0.0


def _inside(rect, bbox) -> bool:
    x0, y0, x1, y1 = bbox
    cx, cy = (x0 + x1) / 2, (y0 + y1) / 2
    return rect.x0 <= cx <= rect.x1 and rect.y0 <= cy <= rect.y1


def _table_text(rows: List[List[Optional[str]]], number: int) -> str:
    out = [f"Table {number}:"]
    for row in rows:
        out.append(" | ".join(re.sub(r"\s+", " ", str(c or "")).strip() for c in row))
    return "\n".join(out)


class PdfDoc:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.doc = fitz.open(self.path)

    def __enter__(self) -> "PdfDoc":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.doc.close()

    def page_count(self) -> int:
        return len(self.doc)

    def page_text(self, index0: int) -> str:
        return self.doc[index0].get_text("text") or ""

    def footer_page_map(self) -> Dict[int, str]:
        """
        0-based page index -> page label printed in the footer.
        Pages without a footer keep their physical number.
        """
        out: Dict[int, str] = {}
        for i in range(len(self.doc)):
            m = FOOTER_PAGE_RE.search(self.page_text(i))
            out[i] = m.group(1) if m else str(i + 1)
        return out

    def page_content(self, index0: int, label: str, table_offset: int = 0) -> PageContent:
        page = self.doc[index0]
        pc = PageContent(index0=index0, label=label)

        tables = []
        try:
            tables = list(page.find_tables().tables)
        except (AttributeError, RuntimeError, ValueError) as e:
            logging.debug("Table detection failed on page %d: %s", index0 + 1, e)
        table_rects = [fitz.Rect(t.bbox) for t in tables]

        blocks = [b for b in (page.get_text("dict").get("blocks") or []) if b.get("type", 0) == 0]
        body = _body_size(blocks)
        for b in blocks:
            if any(_inside(r, b.get("bbox") or (0, 0, 0, 0)) for r in table_rects):
                continue
            text = _block_text(b)
            if not text or FOOTER_SKIP_RE.search(text):
                continue
            size = _block_size(b)
            heading = len(text) < 200 and (
                (body and size >= body * HEADING_SIZE_RATIO) or _block_bold(b)
            )
            pc.items.append(f"{'[HEADING]' if heading else '[TEXT]'} {text}")

        for n, t in enumerate(tables, start=table_offset + 1):
            rows = t.extract() or []
            if rows:
                pc.items.append(f"[TABLE] {_table_text(rows, n)}")
        return pc

    def annotated_text(self, ocr_pages: Optional[Dict[int, str]] = None) -> str:
        """
        Document text with page markers keyed by footer page number and each
        block tagged [HEADING] / [TEXT] / [TABLE]. OCR text, when given for a
        page, replaces that page's (empty) text layer.
        """
        labels = self.footer_page_map()
        pages: List[PageContent] = []
        tables_seen = 0
        for i in range(len(self.doc)):
            if ocr_pages and (ocr_pages.get(i) or "").strip():
                pc = PageContent(index0=i, label=labels[i])
                for para in re.split(r"\n\s*\n", ocr_pages[i]):
                    para = " ".join(para.split())
                    if para and not FOOTER_SKIP_RE.search(para):
                        pc.items.append(f"[TEXT] {para}")
            else:
                pc = self.page_content(i, labels[i], table_offset=tables_seen)
                tables_seen += sum(1 for it in pc.items if it.startswith("[TABLE]"))
            pages.append(pc)
        return "\n\n".join(p.render() for p in pages if p.items)

    def textless_pages(self, min_chars: int = 20) -> List[int]:
        return [i for i in range(len(self.doc)) if len(self.page_text(i).strip()) < min_chars]


def extract_application_text(
    pdf_path: Path,
    ocr: Optional[Callable[[Path, List[int]], Dict[int, str]]] = None,
) -> str:
    """Annotated text of one application PDF, optionally OCR-ing pages without a text layer."""
    with PdfDoc(pdf_path) as doc:
        ocr_pages: Dict[int, str] = {}
        if ocr is not None:
            missing = doc.textless_pages()
            if missing:
                logging.info("%s: %d page(s) without text layer, running OCR", Path(pdf_path).name, len(missing))
                ocr_pages = ocr(Path(pdf_path), missing)
        text = doc.annotated_text(ocr_pages)
        logging.info("Extracted %d characters from %d pages of %s", len(text), doc.page_count(), Path(pdf_path).name)
        return text
