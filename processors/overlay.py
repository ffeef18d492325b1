"""
OCR pixel space -> page space transform.

OCR engines report word boxes in the pixel space of the image they worked
on: origin top-left, Y increasing downward. PDF page space has its origin
bottom-left with Y increasing upward. Our OCR pages are sized 1 pt per
embedded image pixel, so the transform is a scale followed by a Y flip:

    scale_x = embedded_width / ocr_width
    scale_y = embedded_height / ocr_height
    x = x0 * scale_x
    y = embedded_height - y1 * scale_y          (baseline at the box bottom)
    font_size = max((y1 - y0) * scale_y * 0.9, 6)

The scale step matters whenever the engine rescaled the image internally;
without it every word drifts toward the origin on upscaled inputs.

Everything here is pure arithmetic so it can be tested without an OCR engine.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from engines.ocr.base import RecognizedWord

FONT_SIZE_RATIO = 0.9
MIN_FONT_SIZE = 6.0


@dataclass(frozen=True)
class WordPlacement:
    """Where and how large to draw one recognized word on the output page."""
    text: str
    x: float
    y: float
    font_size: float
    confidence: float = 0.0


def scale_factors(
    embedded_size: Tuple[float, float],
    ocr_size: Optional[Tuple[float, float]]
) -> Tuple[float, float]:
    """
    Factors mapping OCR pixels onto embedded-image units.

    A missing or degenerate ocr_size means the engine worked on the image as
    embedded, i.e. scale 1.
    """
    embedded_width, embedded_height = embedded_size
    if not ocr_size or ocr_size[0] <= 0 or ocr_size[1] <= 0:
        return 1.0, 1.0
    return embedded_width / ocr_size[0], embedded_height / ocr_size[1]


def place_word(
    word: RecognizedWord,
    embedded_size: Tuple[float, float],
    ocr_size: Optional[Tuple[float, float]],
    font_size_ratio: float = FONT_SIZE_RATIO,
    min_font_size: float = MIN_FONT_SIZE
) -> Optional[WordPlacement]:
    """
    Map one word box to page space.

    Returns:
        WordPlacement, or None for words whose text is blank
    """
    text = word.text.strip() if word.text else ''
    if not text:
        return None

    scale_x, scale_y = scale_factors(embedded_size, ocr_size)
    embedded_height = embedded_size[1]
    bbox = word.bbox

    glyph_height = (bbox.y1 - bbox.y0) * scale_y
    return WordPlacement(
        text=text,
        x=bbox.x0 * scale_x,
        y=embedded_height - bbox.y1 * scale_y,
        font_size=max(glyph_height * font_size_ratio, min_font_size),
        confidence=word.confidence
    )


def place_words(
    words: Iterable[RecognizedWord],
    embedded_size: Tuple[float, float],
    ocr_size: Optional[Tuple[float, float]],
    font_size_ratio: float = FONT_SIZE_RATIO,
    min_font_size: float = MIN_FONT_SIZE
) -> List[WordPlacement]:
    """place_word over a page's words, dropping blanks and keeping order."""
    placements = []
    for word in words:
        placement = place_word(word, embedded_size, ocr_size, font_size_ratio, min_font_size)
        if placement is not None:
            placements.append(placement)
    return placements
