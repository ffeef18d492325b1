#!/usr/bin/env python3
"""
Integration Test: Main Orchestrator

Runs every operation through FolioPipeline. Compression uses a fake gs
script where a successful run is needed, so only the real-tool test needs
Ghostscript installed.

This test verifies:
1. Pipeline initializes its engines
2. merge/split/reorder/images_to_pdf produce the expected pages
3. run() reports failures as {kind, message, detail} and walks the state machine
4. Compression stats are recorded
5. OCR of an image goes through the configured engine
6. Concurrent requests do not interfere
7. Oversized images and unwritable OCR scratch files come back as structured errors
8. OCR of a PDF renders each page at 2x and adds a text layer

Usage:
    python tests/functional_tests/test_pipeline.py
"""

import io
import shutil
import stat
import struct
import sys
import tempfile
import zlib
from pathlib import Path
from unittest import mock

import pikepdf
import pytest
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError
from PIL import Image

from _support import make_image, make_pdf, pdf_widths, run_tests
from engines.compression.ghostscript import default_binary
from engines.ocr import get_ocr_engine
from engines.ocr.base import BoundingBox, OCRResult, RecognizedWord
from folio import FolioPipeline, PipelineResult, RequestState
from utilities import Print, is_verbose, set_verbose

COPY_TOOL = """#!/bin/sh
for arg in "$@"; do
  case "$arg" in
    -sOutputFile=*) out="${arg#-sOutputFile=}" ;;
  esac
  last="$arg"
done
cp "$last" "$out"
"""


def _pipeline(tmp: str, overrides: dict = None) -> FolioPipeline:
    settings = {'processing': {'temp_dir': str(Path(tmp) / 'artifacts')}}
    for key, value in (overrides or {}).items():
        settings.setdefault(key, {}).update(value)
    pipeline = FolioPipeline(overrides=settings)
    pipeline.initialize()
    return pipeline


def _copy_tool(tmp: str) -> str:
    path = Path(tmp) / "fake-gs"
    path.write_text(COPY_TOOL)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def test_pipeline_initialization():
    Print("HEADER", "Testing Pipeline Initialization")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        assert pipeline.pdf_engine is not None, "PDF engine not initialized"
        assert pipeline.compressor is not None, "Compressor not initialized"
        assert pipeline.artifacts.base_dir == Path(tmp) / 'artifacts'
        assert pipeline.ocr_engine is None, "OCR engine starts on first use"

    uninitialized = FolioPipeline()
    with pytest.raises(RuntimeError):
        uninitialized.merge([make_pdf([100])], preset=None)

    with pytest.raises(FileNotFoundError):
        FolioPipeline(config_path=Path("/nonexistent/config.json"))


def test_document_operations():
    Print("HEADER", "Testing Merge, Split And Reorder")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)

        merged = pipeline.merge([make_pdf([100, 110]), make_pdf([200])], preset=None)
        assert pdf_widths(merged) == [100, 110, 200]

        extracted = pipeline.split(make_pdf([100 + i for i in range(12)]), "1-3,5,8-10")
        assert pdf_widths(extracted) == [100, 101, 102, 104, 107, 108, 109]

        reordered = pipeline.reorder(make_pdf([100, 200, 300]), "[2, 0, 0]")
        assert pdf_widths(reordered) == [300, 100, 100]


def test_images_to_pdf():
    Print("HEADER", "Testing Images To PDF")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)

        result = pipeline.run('images_to_pdf', images=[make_image((400, 200)), make_image((100, 300), fmt='JPEG')], preset=None)
        assert result.ok, result.error
        assert result.stats['pages'] == 2

        with pikepdf.open(io.BytesIO(result.payload)) as pdf:
            for page in pdf.pages:
                assert [round(float(v), 2) for v in page.MediaBox] == [0, 0, 595.28, 841.89], "Pages are A4"
            # Landscape image fills the page width, centred vertically
            content = pdf.pages[0].Contents.read_bytes()
            cm_line = next(line for line in content.split(b'\n') if line.endswith(b' cm'))
            width, _, _, height, x, y = (float(v) for v in cm_line.split()[:6])
            assert (width, height, x) == pytest.approx((595.28, 297.64, 0.0), abs=0.01)
            assert y == pytest.approx((841.89 - 297.64) / 2, abs=0.01)

        bad = pipeline.run('images_to_pdf', images=[make_image(fmt='GIF')], preset=None)
        assert not bad.ok and bad.error['kind'] == 'InvalidInput'


def test_run_reports_structured_errors():
    Print("HEADER", "Testing Structured Errors")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        pdf = make_pdf([100, 200, 300])

        cases = [
            (dict(operation='merge', files=[]), 'EmptyInput'),
            (dict(operation='merge', files=[pdf, b'not a pdf'], preset=None), 'InvalidInput'),
            (dict(operation='split', file=pdf, range_spec='1-x'), 'InvalidRange'),
            (dict(operation='split', file=b'', range_spec='1'), 'InvalidInput'),
            (dict(operation='reorder', file=pdf, order_spec='[0, 3]'), 'OutOfBounds'),
            (dict(operation='reorder', file=pdf, order_spec='[0,'), 'InvalidInput'),
            (dict(operation='compress', file=pdf, preset='ultra'), 'InvalidInput'),
            (dict(operation='ocrize', file=b'plain text'), 'InvalidInput'),
            (dict(operation='resize'), 'InvalidInput'),
        ]
        for kwargs, expected_kind in cases:
            result = pipeline.run(**kwargs)
            Print("INFO", f"{kwargs['operation']}: {result.error}")
            assert isinstance(result, PipelineResult)
            assert not result.ok and result.payload is None
            assert result.error['kind'] == expected_kind, f"{kwargs}: got {result.error}"
            assert set(result.error) >= {'kind', 'message', 'detail'}
            assert result.states[0] == RequestState.RECEIVED
            assert result.states[-1] == RequestState.FAILED

        # Validation failures happen before any transform
        result = pipeline.run('split', file=pdf, range_spec='abc')
        assert RequestState.TRANSFORMED not in result.states


def test_run_state_sequence():
    Print("HEADER", "Testing Request States")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        result = pipeline.run('merge', files=[make_pdf([100]), make_pdf([200])], preset=None)

        assert result.ok
        assert result.states == [
            RequestState.RECEIVED,
            RequestState.VALIDATED,
            RequestState.TRANSFORMED,
            RequestState.DELIVERED,
        ]
        assert result.stats['pages'] == 2
        assert result.compression_info is None


def test_missing_compressor_is_reported():
    Print("HEADER", "Testing Missing Ghostscript")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp, {'compression': {'ghostscript': {'binary_path': str(Path(tmp) / 'no-gs')}}})
        result = pipeline.run('compress', file=make_pdf([100]), preset='screen')

        assert result.error['kind'] == 'ToolUnavailable'
        assert RequestState.TRANSFORMED in result.states
        assert list((Path(tmp) / 'artifacts').iterdir()) == [], "Temp files must be released on failure"


@pytest.mark.skipif(sys.platform == 'win32', reason="fake gs is a POSIX shell script")
def test_compression_stats_with_fake_tool():
    Print("HEADER", "Testing Compression Pass")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp, {'compression': {'ghostscript': {'binary_path': _copy_tool(tmp)}}})
        result = pipeline.run('merge', files=[make_pdf([100]), make_pdf([200])], preset='EBOOK')

        assert result.ok, result.error
        assert RequestState.COMPRESSED in result.states
        assert result.stats['preset'] == 'ebook'
        assert result.stats['compressed_size'] == result.stats['uncompressed_size']
        assert result.stats['reduction_pct'] == 0
        assert "0.0% smaller" in result.compression_info
        assert pdf_widths(result.payload) == [100, 200]
        assert list((Path(tmp) / 'artifacts').iterdir()) == []


class FixedEngine:
    name = "fixed"

    def initialize(self):
        pass

    def recognize(self, image, progress=None):
        word = RecognizedWord("Searchable", 95.0, BoundingBox(10, 10, 110, 40))
        return OCRResult(words=[word], image_size=image.size)


def test_ocrize_image():
    Print("HEADER", "Testing OCR Of An Image")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        pipeline.ocr_engine = FixedEngine()

        progress = []
        output = pipeline.ocrize(make_image((300, 150)), preset=None, progress=progress.append)
        with pikepdf.open(io.BytesIO(output)) as pdf:
            assert len(pdf.pages) == 1
            assert b'(Searchable) Tj' in pdf.pages[0].Contents.read_bytes()
        assert progress[-1] == 100


def test_concurrent_requests():
    Print("HEADER", "Testing Concurrent Requests")

    with tempfile.TemporaryDirectory() as tmp:
        with _pipeline(tmp) as pipeline:
            futures = [
                pipeline.submit('reorder', file=make_pdf([100 + i, 200 + i]), order_spec='[1, 0]', preset=None)
                for i in range(12)
            ]
            results = [f.result() for f in futures]

        for i, result in enumerate(results):
            assert result.ok, result.error
            assert pdf_widths(result.payload) == [200 + i, 100 + i]


def test_real_gs_compress():
    Print("HEADER", "Testing Compress With Real Ghostscript")
    if not shutil.which(default_binary()):
        pytest.skip("Ghostscript not installed")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        result = pipeline.run('compress', file=pipeline.split(make_pdf([100, 200, 300]), "1-3"), preset='screen')
        assert result.ok, result.error
        assert result.states[-2:] == [RequestState.COMPRESSED, RequestState.DELIVERED]
        assert pdf_widths(result.payload) == [100, 200, 300]


def _png_header(width: int, height: int) -> bytes:
    """A PNG that declares width x height but carries no pixel data."""
    def chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack('>I', len(data)) + kind + data + struct.pack('>I', zlib.crc32(kind + data) & 0xffffffff)

    ihdr = struct.pack('>IIBBBBB', width, height, 8, 2, 0, 0, 0)
    return b'\x89PNG\r\n\x1a\n' + chunk(b'IHDR', ihdr) + chunk(b'IEND', b'')


def test_oversized_image_is_rejected():
    Print("HEADER", "Testing Oversized Image")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        bomb = _png_header(20000, 20000)

        for operation, kwargs in (('images_to_pdf', {'images': [bomb]}), ('ocrize', {'file': bomb})):
            result = pipeline.run(operation, preset=None, **kwargs)
            Print("INFO", f"{operation}: {result.error}")
            assert not result.ok
            assert result.error['kind'] == 'InvalidInput'
            assert 'exceeds limit' in result.error['detail']
            assert result.states[-1] == RequestState.FAILED


def test_ocr_scratch_write_failure_is_reported():
    Print("HEADER", "Testing Unwritable OCR Scratch File")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        pipeline.ocr_engine = get_ocr_engine("tesseract", {}, pipeline.artifacts)
        image = make_image((120, 60))

        with mock.patch.object(Image.Image, 'save', side_effect=OSError("No space left on device")):
            result = pipeline.run('ocrize', file=image, preset=None)

        assert not result.ok
        assert result.error['kind'] == 'IOFailure'
        assert list((Path(tmp) / 'artifacts').iterdir()) == []


def _poppler_available() -> bool:
    return bool(shutil.which('pdftoppm') and shutil.which('pdfinfo'))


@pytest.mark.skipif(not _poppler_available(), reason="poppler not installed")
def test_ocrize_pdf():
    Print("HEADER", "Testing OCR Of A PDF")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        pipeline.ocr_engine = FixedEngine()

        result = pipeline.run('ocrize', file=make_pdf([100], height=200), preset=None)
        assert result.ok, result.error
        assert result.stats['pages'] == 1

        with pikepdf.open(io.BytesIO(result.payload)) as pdf:
            page = pdf.pages[0]
            # Rendered at 144 DPI: 2 px per point, embedded at 1 pt per pixel
            assert [round(float(v)) for v in page.MediaBox] == [0, 0, 200, 400]
            assert b'(Searchable) Tj' in page.Contents.read_bytes()


def test_ocrize_unrenderable_pdf():
    Print("HEADER", "Testing OCR Of An Unrenderable PDF")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = _pipeline(tmp)
        pipeline.ocr_engine = FixedEngine()
        pdf = make_pdf([100])

        with mock.patch("processors.ocr_compositor.convert_from_bytes",
                        side_effect=PDFPageCountError("Syntax Error: Couldn't read xref table")):
            result = pipeline.run('ocrize', file=pdf, preset=None)
        assert result.error['kind'] == 'InvalidInput'

        with mock.patch("processors.ocr_compositor.convert_from_bytes",
                        side_effect=PDFInfoNotInstalledError("Is poppler installed and in PATH?")):
            result = pipeline.run('ocrize', file=pdf, preset=None)
        assert result.error['kind'] == 'OCREngineUnavailable'


def test_initialize_leaves_verbosity_alone():
    Print("HEADER", "Testing Process-wide Verbosity")

    previous = is_verbose()
    try:
        set_verbose(True)
        with tempfile.TemporaryDirectory() as tmp:
            _pipeline(tmp, {'logging': {'verbose': False}})
            assert is_verbose(), "Pipelines must not change the process-wide log level"

        set_verbose(False)
        with tempfile.TemporaryDirectory() as tmp:
            _pipeline(tmp, {'logging': {'verbose': True}})
            assert not is_verbose()
    finally:
        set_verbose(previous)


def test_unknown_engine_lists_registered_names():
    Print("HEADER", "Testing Unknown Engine")

    with tempfile.TemporaryDirectory() as tmp:
        pipeline = FolioPipeline(overrides={'processing': {'temp_dir': tmp}})
        with pytest.raises(ValueError) as excinfo:
            pipeline.initialize(compressor_name="qpdf")
        assert "ghostscript" in str(excinfo.value), str(excinfo.value)


def main():
    run_tests("Folio Pipeline Integration Test", [
        ("Pipeline Initialization", test_pipeline_initialization),
        ("Merge, Split And Reorder", test_document_operations),
        ("Images To PDF", test_images_to_pdf),
        ("Structured Errors", test_run_reports_structured_errors),
        ("Request States", test_run_state_sequence),
        ("Missing Ghostscript", test_missing_compressor_is_reported),
        ("Compression Pass", test_compression_stats_with_fake_tool),
        ("OCR Of An Image", test_ocrize_image),
        ("Concurrent Requests", test_concurrent_requests),
        ("Oversized Image", test_oversized_image_is_rejected),
        ("Unwritable OCR Scratch File", test_ocr_scratch_write_failure_is_reported),
        ("OCR Of A PDF", test_ocrize_pdf),
        ("OCR Of An Unrenderable PDF", test_ocrize_unrenderable_pdf),
        ("Process-wide Verbosity", test_initialize_leaves_verbosity_alone),
        ("Unknown Engine", test_unknown_engine_lists_registered_names),
        ("Compress With Real Ghostscript", test_real_gs_compress),
    ])


if __name__ == "__main__":
    main()
