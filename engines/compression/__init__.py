"""
Document compressors for Folio.

    compressor = get_compressor("ghostscript", config)
    compressor.compress(input_path, output_path, CompressionPreset.parse("ebook"))
"""

from engines.registry import Registry
from .base import CompressionPreset, DocumentCompressor

COMPRESSOR_REGISTRY = Registry("compressor")
register_compressor = COMPRESSOR_REGISTRY.register


def get_compressor(name: str, config: dict) -> DocumentCompressor:
    """
    Get a document compressor instance by name.

    Raises:
        ValueError: If compressor name is not registered
    """
    return COMPRESSOR_REGISTRY.create(name, config)


# Compressors register themselves on import
from . import ghostscript  # noqa: E402,F401

__all__ = ['CompressionPreset', 'DocumentCompressor', 'get_compressor', 'register_compressor']
