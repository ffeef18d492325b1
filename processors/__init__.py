"""
Document processors for Folio v0.3

Page selection, document assembly and the OCR text-layer compositor.
"""

from .assembler import DocumentAssembler, SourceRef
from .ocr_compositor import OCRCompositor, rasterize
from .overlay import WordPlacement, place_word, place_words
from .page_selector import parse_order, parse_range

__all__ = [
    'DocumentAssembler',
    'OCRCompositor',
    'SourceRef',
    'WordPlacement',
    'parse_order',
    'parse_range',
    'place_word',
    'place_words',
    'rasterize',
]
