"""
OCR Engine Protocol for Folio

Defines the contract that all OCR engines must implement, and the value
types they return. Uses Python's Protocol for structural subtyping.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

from PIL import Image

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class BoundingBox:
    """Word rectangle in OCR pixel space (origin top-left, Y down)."""
    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0


@dataclass(frozen=True)
class RecognizedWord:
    text: str
    confidence: float
    bbox: BoundingBox


@dataclass
class OCRResult:
    """
    Words recognized on one image.

    image_size is the (width, height) of the image the engine actually worked
    on. It can differ from the input image when the engine rescales
    internally; None means the engine did not report it.
    """
    words: List[RecognizedWord] = field(default_factory=list)
    image_size: Optional[Tuple[int, int]] = None


class OCREngine(Protocol):
    """
    Protocol for OCR engines.

    All OCR engines must implement these methods to be compatible
    with the Folio pipeline.
    """

    def initialize(self) -> None:
        """
        Verify the engine can run.

        This method should:
        - Verify the OCR binary/library is available
        - Verify the configured language data is installed

        Raises:
            OCREngineUnavailable: If engine cannot be initialized
        """
        ...

    def recognize(
        self,
        image: Image.Image,
        progress: Optional[ProgressCallback] = None
    ) -> OCRResult:
        """
        Run OCR on one image.

        Args:
            image: PIL Image to recognize
            progress: Optional callback receiving 0-100 while recognition runs

        Returns:
            OCRResult with word boxes in the engine's pixel space

        Raises:
            RuntimeError: If recognition of this image fails
        """
        ...

    @property
    def name(self) -> str:
        """
        Engine identifier for logging and debugging.

        Returns:
            Unique name of this engine (e.g., 'tesseract')
        """
        ...
