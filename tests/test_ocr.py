from __future__ import annotations

import fitz
import pytesseract

from hrsa_review.ocr import PageOcr


def _scan_pdf(path):
    doc = fitz.open()
    doc.new_page()
    doc.new_page()
    doc.save(str(path))
    doc.close()
    return path


def test_ocr_results_are_cached(tmp_path, monkeypatch):
    pdf = _scan_pdf(tmp_path / "Application-242645.pdf")
    calls = []

    def fake_image_to_string(img, lang=None):
        calls.append(lang)
        return f"page text {len(calls)}\n"

    monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)
    ocr = PageOcr(tmp_path / "ocr", lang="eng", dpi=50)

    first = ocr(pdf, [1, 0, 7])
    assert first == {0: "page text 1\n", 1: "page text 2\n"}
    assert calls == ["eng", "eng"]
    assert len(list((tmp_path / "ocr").glob("Application-242645.*.ocr.txt"))) == 1

    again = ocr(pdf, [0, 1, 7])
    assert again == {0: "page text 1", 1: "page text 2"}
    assert len(calls) == 2


def test_tesseract_failure_leaves_page_empty(tmp_path, monkeypatch):
    pdf = _scan_pdf(tmp_path / "scan.pdf")

    def broken(img, lang=None):
        raise pytesseract.TesseractError(1, "missing language data")

    monkeypatch.setattr(pytesseract, "image_to_string", broken)
    assert PageOcr(tmp_path / "ocr", dpi=50).ocr_pages(pdf, [0]) == {0: ""}
    assert PageOcr(tmp_path / "ocr", dpi=50).ocr_pages(pdf, []) == {}
