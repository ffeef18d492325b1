"""
Engine registries for Folio

Factory pattern with decorator-based registration, shared by the OCR, PDF
and compression engine packages.

Usage:
    # In the package __init__:
    _registry = Registry("PDF engine")
    register_pdf_engine = _registry.register

    # In engine implementation:
    @register_pdf_engine("pikepdf")
    class PikePDFEngineFactory:
        @staticmethod
        def create(config: dict) -> PDFEngine:
            return PikePDFEngine(config)

    # To get an engine:
    engine = _registry.create("pikepdf", config)
"""

from typing import Callable, Dict, List


class Registry:
    """Name -> factory mapping for one kind of engine."""

    def __init__(self, kind: str):
        self.kind = kind
        self.factories: Dict[str, Callable] = {}

    def register(self, name: str):
        """
        Decorator to register a factory class under `name`.

        The class must expose a static `create(...)` method.
        """
        def decorator(factory_class):
            self.factories[name] = factory_class.create
            return factory_class
        return decorator

    def create(self, name: str, *args, **kwargs):
        """
        Instantiate the engine registered as `name`.

        Raises:
            ValueError: If name is not registered
        """
        if name not in self.factories:
            available = ', '.join(self.names()) or 'none'
            raise ValueError(
                f"Unknown {self.kind}: '{name}'. "
                f"Available: {available}"
            )
        return self.factories[name](*args, **kwargs)

    def names(self) -> List[str]:
        return list(self.factories)
