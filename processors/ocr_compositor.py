"""
OCR compositor: scanned pages in, searchable PDF out.

Pipeline per page:
1. Embed the raster on a page sized 1 pt per pixel
2. OCR the same raster
3. Map word boxes from the engine's pixel space to page space (overlay.py)
4. Draw the words as invisible text under the image

A page whose OCR fails is kept without a text layer; an engine that cannot
start fails the whole document (OCREngineUnavailable from initialize()).
"""

from typing import Callable, List, Optional, Sequence

import pikepdf
from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from PIL import Image

from errors import InvalidInput, OCREngineUnavailable
from processors.overlay import FONT_SIZE_RATIO, MIN_FONT_SIZE, place_words
from utilities import Print

# 2x the 72 dpi page space, the rendering scale used for OCR input
DEFAULT_OCR_DPI = 144


def rasterize(pdf_bytes: bytes, dpi: int = DEFAULT_OCR_DPI, timeout: Optional[float] = None) -> List[Image.Image]:
    """
    Render every page of a PDF to a PIL image (poppler via pdf2image).

    Raises:
        InvalidInput: If the PDF cannot be rendered, or rendering exceeds timeout seconds
        OCREngineUnavailable: If poppler is not installed
    """
    try:
        pages = convert_from_bytes(pdf_bytes, dpi=dpi, timeout=timeout)
    except PDFInfoNotInstalledError as e:
        raise OCREngineUnavailable(
            "Poppler is not installed, cannot render PDF pages for OCR",
            detail=f"{e}. Install: brew install poppler (macOS) or apt-get install poppler-utils (Linux)"
        )
    except (PDFPageCountError, PDFSyntaxError) as e:
        raise InvalidInput("Could not render PDF for OCR", detail=str(e))
    except PDFPopplerTimeoutError as e:
        raise InvalidInput(f"Rendering PDF for OCR timed out after {timeout} seconds", detail=str(e))

    Print("INFO", f"Rendered {len(pages)} page{'s' if len(pages) != 1 else ''} at {dpi} DPI")
    return pages


class OCRCompositor:
    """
    Builds searchable PDFs from page images.

    Attributes:
        ocr_engine: Initialized OCR engine
        pdf_engine: Document library
        font_size_ratio: Fraction of the word box height used as font size
        min_font_size: Floor for the font size, in points
    """

    def __init__(
        self,
        ocr_engine,
        pdf_engine,
        font_size_ratio: float = FONT_SIZE_RATIO,
        min_font_size: float = MIN_FONT_SIZE
    ):
        self.ocr_engine = ocr_engine
        self.pdf_engine = pdf_engine
        self.font_size_ratio = font_size_ratio
        self.min_font_size = min_font_size

    def compose(
        self,
        pages: Sequence[Image.Image],
        progress: Optional[Callable[[int], None]] = None
    ) -> pikepdf.Pdf:
        """
        Create one searchable page per image, in order.

        Args:
            pages: Page rasters
            progress: Optional callback receiving overall completion 0-100

        Returns:
            New document
        """
        if not pages:
            raise InvalidInput("No pages to recognize")

        output = self.pdf_engine.new_document()
        total = len(pages)
        total_words = 0
        failed_pages = 0

        for page_num, image in enumerate(pages, 1):
            Print("PROGRESS", f"OCR page {page_num}/{total}")

            def page_progress(percent: int, done=page_num - 1) -> None:
                if progress:
                    progress(int((done + percent / 100) * 100 / total))

            embedded_size = image.size
            try:
                result = self.ocr_engine.recognize(image, progress=page_progress)
                placements = place_words(
                    result.words,
                    embedded_size,
                    result.image_size,
                    self.font_size_ratio,
                    self.min_font_size
                )
            except OCREngineUnavailable:
                raise
            except RuntimeError as e:
                Print("WARNING", f"OCR failed on page {page_num}, keeping it without text layer: {e}")
                placements = []
                failed_pages += 1

            self.pdf_engine.create_searchable_page(output, image, placements)
            total_words += len(placements)

            if progress:
                progress(int(page_num * 100 / total))

        Print("INFO", f"Text layer: {total_words} words on {total} page{'s' if total != 1 else ''}")
        if failed_pages:
            Print("WARNING", f"{failed_pages} page{'s' if failed_pages != 1 else ''} without text layer")
        return output
