"""
OCR engines for Folio.

    engine = get_ocr_engine("tesseract", config, artifacts)
    engine.initialize()
    result = engine.recognize(image)
"""

from engines.registry import Registry
from .base import BoundingBox, OCREngine, OCRResult, RecognizedWord

OCR_REGISTRY = Registry("OCR engine")
register_ocr_engine = OCR_REGISTRY.register


def get_ocr_engine(name: str, config: dict, artifacts) -> OCREngine:
    """
    Get an OCR engine instance by name.

    Args:
        name: Engine identifier (must be registered)
        config: Engine-specific configuration dictionary
        artifacts: TempArtifactStore for the engine's scratch files

    Returns:
        OCR engine instance (call initialize() before use)

    Raises:
        ValueError: If engine name is not registered
    """
    return OCR_REGISTRY.create(name, config, artifacts)


# Engines register themselves on import
from . import tesseract  # noqa: E402,F401

__all__ = ['BoundingBox', 'OCREngine', 'OCRResult', 'RecognizedWord', 'get_ocr_engine', 'register_ocr_engine']
