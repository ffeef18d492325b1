#!/usr/bin/env python3
"""
Functional Test for Tesseract OCR Engine

The hOCR parsing tests run anywhere. The end-to-end test needs Tesseract
with English language data and is skipped without it.

This test verifies:
1. hOCR word boxes, confidences and the page size are parsed
2. Malformed hOCR still parses through the HTML fallback
3. Tesseract is installed and accessible
4. Engine can initialize properly and rejects missing languages
5. OCR of a rendered text image finds the words
6. A scratch image that cannot be written is reported as IOFailure

Usage:
    python tests/functional_tests/test_tesseract_engine.py
"""

import json
import shutil
import tempfile
from pathlib import Path
from unittest import mock

import pytest
from PIL import Image, ImageDraw, ImageFont

from _support import repo_root, run_tests
from artifacts import TempArtifactStore
from engines.ocr import get_ocr_engine
from engines.ocr.tesseract import parse_hocr
from errors import IOFailure, OCREngineUnavailable
from utilities import Print

SAMPLE_HOCR = b"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN"
    "http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">
<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="en" lang="en">
 <head><title></title></head>
 <body>
  <div class='ocr_page' id='page_1' title='image "unknown"; bbox 0 0 1700 2200; ppageno 0'>
   <div class='ocr_carea' id='block_1_1' title="bbox 100 120 900 180">
    <p class='ocr_par' id='par_1_1'>
     <span class='ocr_line' id='line_1_1' title="bbox 100 120 900 180; baseline 0 -8; x_size 50">
      <span class='ocrx_word' id='word_1_1' title='bbox 100 120 380 178; x_wconf 96'>Quarterly</span>
      <span class='ocrx_word' id='word_1_2' title='bbox 400 122 620 176; x_wconf 91'><strong>Report</strong></span>
      <span class='ocrx_word' id='word_1_3' title='bbox 640 122 660 176; x_wconf 12'> </span>
     </span>
    </p>
   </div>
  </div>
 </body>
</html>
"""


def test_parse_hocr_words_and_page_size():
    Print("HEADER", "Testing hOCR Parsing")

    result = parse_hocr(SAMPLE_HOCR)
    Print("INFO", f"Parsed {len(result.words)} words, image size {result.image_size}")

    assert result.image_size == (1700, 2200)
    assert [w.text for w in result.words] == ["Quarterly", "Report"], "Blank words must be skipped"

    first = result.words[0]
    assert (first.bbox.x0, first.bbox.y0, first.bbox.x1, first.bbox.y1) == (100, 120, 380, 178)
    assert first.confidence == 96
    assert first.bbox.width == 280 and first.bbox.height == 58


def test_parse_hocr_html_fallback():
    Print("HEADER", "Testing hOCR HTML Fallback")

    # Unclosed tags are not XML
    malformed = (
        b"<html><body><div class='ocr_page' title='bbox 0 0 640 480'>"
        b"<span class='ocrx_word' title='bbox 10 20 50 40; x_wconf 80'>hello<br>"
        b"<span class='ocrx_word' title='bbox 60 20 90 40'>world"
    )
    result = parse_hocr(malformed)
    assert result.image_size == (640, 480)
    texts = [w.text for w in result.words]
    assert "world" in texts, f"Unexpected words: {texts}"
    assert result.words[-1].confidence == 0.0, "Missing x_wconf defaults to 0"


def test_parse_hocr_without_page():
    result = parse_hocr(b"<html><body><span class='ocrx_word' title='bbox 1 2 3 4'>x</span></body></html>")
    assert result.image_size is None
    assert len(result.words) == 1


def _engine(config=None):
    config_path = repo_root / "config" / "config.json"
    with open(config_path) as f:
        tesseract_config = json.load(f)['ocr_engines']['tesseract']
    tesseract_config.update(config or {})

    binary = tesseract_config.get('binary_path') or 'tesseract'
    if not shutil.which(binary):
        pytest.skip("Tesseract not installed")

    artifacts = TempArtifactStore(Path(tempfile.mkdtemp(prefix="folio-test-")))
    return get_ocr_engine("tesseract", tesseract_config, artifacts), artifacts


def test_missing_binary():
    Print("HEADER", "Testing Missing Tesseract")

    with tempfile.TemporaryDirectory() as tmp:
        engine = get_ocr_engine("tesseract", {'binary_path': str(Path(tmp) / 'no-tesseract')}, TempArtifactStore(Path(tmp)))
        with pytest.raises(OCREngineUnavailable):
            engine.initialize()


def test_missing_language():
    Print("HEADER", "Testing Missing Language")

    engine, _ = _engine({'language': 'eng+zzz'})
    with pytest.raises(OCREngineUnavailable) as excinfo:
        engine.initialize()
    assert 'zzz' in excinfo.value.message


def test_tesseract_engine():
    """
    Functional test for Tesseract OCR engine.

    Renders a simple text image and verifies end-to-end OCR functionality.
    """
    Print("HEADER", "=== Tesseract Engine Functional Test ===")

    Print("PROGRESS", "Step 1: Initializing Tesseract engine...")
    engine, artifacts = _engine()
    try:
        engine.initialize()
    except OCREngineUnavailable as e:
        pytest.skip(f"Tesseract not usable: {e}")
    Print("SUCCESS", f"Engine initialized: {engine.name} ({engine.version})")

    Print("PROGRESS", "Step 2: Creating test image...")
    img = Image.new('RGB', (1200, 300), color='white')
    draw = ImageDraw.Draw(img)
    try:
        font = ImageFont.load_default(size=96)
    except TypeError:
        font = ImageFont.load_default()
    draw.text((60, 90), "HELLO WORLD", fill='black', font=font)

    Print("PROGRESS", "Step 3: Running OCR...")
    progress = []
    result = engine.recognize(img, progress=progress.append)

    texts = [w.text.upper() for w in result.words]
    Print("INFO", f"Words: {texts}")
    assert progress == [0, 100]
    assert result.image_size == (1200, 300)
    assert any("HELLO" in t for t in texts), f"Expected HELLO in {texts}"

    for word in result.words:
        assert 0 <= word.bbox.x0 < word.bbox.x1 <= 1200
        assert 0 <= word.bbox.y0 < word.bbox.y1 <= 300

    # Scratch files are released after each call
    assert list(artifacts.base_dir.iterdir()) == []
    Print("COMPLETED", "Tesseract engine test passed")


def test_unwritable_input_image():
    Print("HEADER", "Testing Unwritable OCR Input")

    with tempfile.TemporaryDirectory() as tmp:
        artifacts = TempArtifactStore(Path(tmp))
        engine = get_ocr_engine("tesseract", {'binary_path': 'tesseract'}, artifacts)

        with mock.patch.object(Image.Image, 'save', side_effect=OSError("No space left on device")):
            with pytest.raises(IOFailure) as excinfo:
                engine.recognize(Image.new('RGB', (50, 20), 'white'))

        Print("INFO", f"{excinfo.value}")
        assert "No space left on device" in excinfo.value.detail
        assert not isinstance(excinfo.value, RuntimeError), "Must not be mistaken for a per-page OCR failure"
        assert list(artifacts.base_dir.iterdir()) == [], "Scratch files must be released"


def main():
    run_tests("Tesseract Engine Functional Test", [
        ("hOCR Parsing", test_parse_hocr_words_and_page_size),
        ("hOCR HTML Fallback", test_parse_hocr_html_fallback),
        ("hOCR Without Page", test_parse_hocr_without_page),
        ("Missing Tesseract", test_missing_binary),
        ("Missing Language", test_missing_language),
        ("Unwritable OCR Input", test_unwritable_input_image),
        ("End-to-end OCR", test_tesseract_engine),
    ])


if __name__ == "__main__":
    main()
