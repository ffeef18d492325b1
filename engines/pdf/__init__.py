"""
PDF engines for Folio.

    engine = get_pdf_engine("pikepdf", config)
"""

from engines.registry import Registry
from .base import PDFEngine

PDF_REGISTRY = Registry("PDF engine")
register_pdf_engine = PDF_REGISTRY.register


def get_pdf_engine(name: str, config: dict) -> PDFEngine:
    """
    Get a PDF engine instance by name.

    Raises:
        ValueError: If engine name is not registered
    """
    return PDF_REGISTRY.create(name, config)


# Engines register themselves on import
from . import pikepdf_engine  # noqa: E402,F401

__all__ = ['PDFEngine', 'get_pdf_engine', 'register_pdf_engine']
