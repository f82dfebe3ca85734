from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, List, Optional

import fitz  # PyMuPDF

_CACHE_MARK = "===OCR PAGE "


def _cache_key(pdf_path: Path, *, lang: str, dpi: int, pages: List[int]) -> str:
    h = hashlib.sha256()
    h.update(pdf_path.read_bytes())
    h.update(f"|lang={lang}|dpi={dpi}|pages={','.join(str(p) for p in pages)}".encode("utf-8"))
    return h.hexdigest()[:12]


def _write_cache_txt(path: Path, ocr_pages: Dict[int, str]) -> None:
    parts: List[str] = []
    for i in sorted(ocr_pages):
        parts.append(f"{_CACHE_MARK}{i}===\n")
        parts.append((ocr_pages[i] or "").rstrip() + "\n")
    path.write_text("".join(parts), encoding="utf-8")


def _read_cache_txt(path: Path) -> Dict[int, str]:
    out: Dict[int, str] = {}
    cur: Optional[int] = None
    buf: List[str] = []
    for line in path.read_text(encoding="utf-8", errors="ignore").splitlines(True):
        if line.startswith(_CACHE_MARK) and line.rstrip().endswith("==="):
            if cur is not None:
                out[cur] = "".join(buf).strip()
            buf = []
            cur = int(line.strip()[len(_CACHE_MARK):-3])
            continue
        buf.append(line)
    if cur is not None:
        out[cur] = "".join(buf).strip()
    return out


class PageOcr:
    """
    Tesseract OCR for application pages that carry no text layer (scanned
    attachments). Results are cached per (pdf bytes, lang, dpi, pages).
    """

    def __init__(self, cache_dir: Path, lang: str = "eng", dpi: int = 200, tesseract_cmd: Optional[str] = None):
        self.cache_dir = Path(cache_dir)
        self.lang = lang
        self.dpi = int(dpi)
        self.tesseract_cmd = tesseract_cmd

    def __call__(self, pdf_path: Path, pages: List[int]) -> Dict[int, str]:
        return self.ocr_pages(pdf_path, pages)

    def ocr_pages(self, pdf_path: Path, pages: List[int]) -> Dict[int, str]:
        pdf_path = Path(pdf_path)
        pages = sorted({int(p) for p in pages})
        if not pages:
            return {}

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        key = _cache_key(pdf_path, lang=self.lang, dpi=self.dpi, pages=pages)
        cache_file = self.cache_dir / f"{pdf_path.stem}.{key}.ocr.txt"
        if cache_file.exists():
            logging.info("OCR cache hit: %s", cache_file.name)
            return _read_cache_txt(cache_file)

        import pytesseract
        from PIL import Image

        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        out: Dict[int, str] = {}
        with fitz.open(str(pdf_path)) as doc:
            for i in pages:
                if not 0 <= i < len(doc):
                    continue
                pix = doc.load_page(i).get_pixmap(dpi=self.dpi, alpha=False)
                img = Image.frombytes("RGB", [pix.width, pix.height], pix.samples)
                try:
                    out[i] = pytesseract.image_to_string(img, lang=self.lang) or ""
                except pytesseract.TesseractError as e:
                    logging.warning("OCR failed on page %d of %s: %s", i + 1, pdf_path.name, e)
                    out[i] = ""

        chars = sum(len(v) for v in out.values())
        logging.info("OCR recovered %d characters from %d page(s) of %s", chars, len(out), pdf_path.name)
        _write_cache_txt(cache_file, out)
        return out
