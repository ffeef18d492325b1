"""
PDF Engine Protocol for Folio

Defines the contract that all PDF manipulation engines must implement.
"""

from typing import Optional, Protocol, Sequence, Tuple
import pikepdf
from PIL import Image


class PDFEngine(Protocol):
    """
    Protocol for PDF manipulation engines.

    PDF engines are responsible for:
    - Loading and serializing documents
    - Copying pages between documents without re-rendering them
    - Creating image pages, optionally with an invisible text layer
    """

    def load(self, data: bytes) -> pikepdf.Pdf:
        """
        Open a PDF from bytes.

        Raises:
            InvalidInput: If the bytes are not a readable PDF
        """
        ...

    def new_document(self) -> pikepdf.Pdf:
        ...

    def page_count(self, pdf: pikepdf.Pdf) -> int:
        ...

    def copy_pages(self, target: pikepdf.Pdf, source: pikepdf.Pdf, indices: Sequence[int]) -> None:
        """
        Append source pages to target, in the order given.

        An index may appear more than once; each occurrence becomes its own page.
        """
        ...

    def duplicate_page(self, pdf: pikepdf.Pdf, index: int) -> None:
        """Append another copy of page `index` of pdf to the end of pdf."""
        ...

    def create_searchable_page(self, pdf: pikepdf.Pdf, image: Image.Image, placements) -> pikepdf.Page:
        """
        Append a page sized 1 pt per image pixel showing the image, with each
        placement drawn as invisible, selectable text.
        """
        ...

    def create_fitted_image_page(
        self,
        pdf: pikepdf.Pdf,
        image: Image.Image,
        page_size: Optional[Tuple[float, float]] = None
    ) -> pikepdf.Page:
        """Append a page of page_size (engine default when None) with the image aspect-fit and centred."""
        ...

    def save(self, pdf: pikepdf.Pdf) -> bytes:
        ...

    @property
    def name(self) -> str:
        """
        Engine identifier for logging and debugging.

        Returns:
            Unique name of this engine (e.g., 'pikepdf')
        """
        ...
