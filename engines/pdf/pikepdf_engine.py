"""
pikepdf-based PDF engine for Folio

Page copying, image pages and the invisible OCR text layer.

Page copying goes through pikepdf's page list, so copied pages keep their
original content streams and resources; nothing is re-rendered.

The invisible text technique (as in OCRmyPDF's hOCR transform):
- PDF rendering mode 3 = "invisible" (neither fill nor stroke)
- Text is still selectable and searchable
- The text is drawn first and the image ON TOP of it, so viewers that
  ignore the rendering mode still show only the scan
- An ExtGState with zero alpha covers the same ground for renderers that
  honour opacity but not Tr 3

OCR pages use 1 pt per image pixel, which keeps word placement a pure
scale-and-flip of the OCR boxes (see processors/overlay.py).
"""

import io
from typing import Dict, List, Sequence, Tuple

import pikepdf
from PIL import Image

from . import register_pdf_engine
from errors import InvalidInput, OutOfBounds
from utilities import Print

A4_POINTS = (595.28, 841.89)


@register_pdf_engine("pikepdf")
class PikePDFEngineFactory:
    """Factory for creating pikepdf engine instances."""

    @staticmethod
    def create(config: dict) -> "PikePDFEngine":
        return PikePDFEngine(config)


class PikePDFEngine:
    """
    pikepdf implementation of the document library boundary.

    Attributes:
        font_name: PDF Base 14 font for the text layer
        text_opacity: Alpha for the text layer (0 = invisible)
        fitted_page_size: Page size in points for images_to_pdf pages
    """

    # PDF Base 14 fonts - guaranteed in all PDF readers
    BASE_14_FONTS = {
        'text': 'Helvetica',
        'mono': 'Courier',
    }

    def __init__(self, config: dict):
        """
        Initialize PDF engine with configuration.

        Args:
            config: Configuration dictionary with optional keys:
                - font: str - Font name or font type key (default: 'Helvetica')
                - text_opacity: float - Text layer alpha (default: 0.0)
                - fitted_page_size: [w, h] - Points (default: A4)
        """
        font_spec = config.get('font', 'Helvetica')
        self.font_name = self.BASE_14_FONTS.get(font_spec, font_spec)
        self.text_opacity = float(config.get('text_opacity', 0.0))
        self.fitted_page_size = tuple(config.get('fitted_page_size', A4_POINTS))

        Print("DEBUG", f"PDF engine initialized: font={self.font_name}, text opacity={self.text_opacity}")

    # ------------------------------------------------------------------
    # Loading, copying, saving
    # ------------------------------------------------------------------

    def load(self, data: bytes) -> pikepdf.Pdf:
        if not data:
            raise InvalidInput("Empty file")
        try:
            return pikepdf.open(io.BytesIO(data))
        except pikepdf.PasswordError:
            raise InvalidInput("PDF is password protected")
        except pikepdf.PdfError as e:
            raise InvalidInput("File is not a readable PDF", detail=str(e))

    def new_document(self) -> pikepdf.Pdf:
        return pikepdf.Pdf.new()

    def page_count(self, pdf: pikepdf.Pdf) -> int:
        return len(pdf.pages)

    def copy_pages(self, target: pikepdf.Pdf, source: pikepdf.Pdf, indices: Sequence[int]) -> None:
        """
        Append source pages to target in the order given.

        The first occurrence of a page is copied from the source document;
        repeats are duplicated from that first copy, since a page object can
        sit in a page tree only once.
        """
        total = len(source.pages)
        first_copy: Dict[int, int] = {}

        for index in indices:
            if index < 0 or index >= total:
                raise OutOfBounds("Page index out of range", detail=f"index {index}, document has {total} pages")

            if index in first_copy:
                self.duplicate_page(target, first_copy[index])
            else:
                target.pages.append(source.pages[index])
                first_copy[index] = len(target.pages) - 1

    def duplicate_page(self, pdf: pikepdf.Pdf, index: int) -> None:
        """Append another copy of page `index` of pdf (pikepdf copies pages already in the document)."""
        pdf.pages.append(pdf.pages[index])

    def save(self, pdf: pikepdf.Pdf) -> bytes:
        buffer = io.BytesIO()
        pdf.save(buffer)
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # Image pages
    # ------------------------------------------------------------------

    def create_searchable_page(self, pdf: pikepdf.Pdf, image: Image.Image, placements) -> pikepdf.Page:
        """
        Append an OCR page: the image at 1 pt per pixel with invisible text under it.

        The layering order is critical:
        1. First: Draw invisible text (rendering mode 3, zero alpha)
        2. Second: Draw image ON TOP of text

        Args:
            pdf: Document to append to
            image: Page raster
            placements: WordPlacement list in page space

        Returns:
            The new page
        """
        width, height = image.size

        content_parts = []
        content_parts.extend(self._build_text_layer(placements))
        content_parts.extend(self._build_image_layer(width, height, 0, 0))

        page = self._create_page(pdf, image, (width, height), b'\n'.join(content_parts), with_text=bool(placements))
        Print("DEBUG", f"OCR page: {width}x{height} pt, {len(placements)} words")
        return page

    def create_fitted_image_page(self, pdf: pikepdf.Pdf, image: Image.Image, page_size=None) -> pikepdf.Page:
        """
        Append a page of page_size (default: configured A4) with the image
        scaled to fit, aspect ratio kept, centred.
        """
        page_width, page_height = page_size or self.fitted_page_size
        ratio = min(page_width / image.width, page_height / image.height)
        draw_width = image.width * ratio
        draw_height = image.height * ratio
        x = (page_width - draw_width) / 2
        y = (page_height - draw_height) / 2

        content = b'\n'.join(self._build_image_layer(draw_width, draw_height, x, y))
        return self._create_page(pdf, image, (page_width, page_height), content, with_text=False)

    def _build_text_layer(self, placements) -> List[bytes]:
        """
        Content stream commands for the invisible text layer.

        One text object; each word gets its own Tf (size) and Tm (position).

        PDF Content Stream operators used:
        - gs: Apply ExtGState /GS0 (alpha)
        - BT/ET: Begin/End text object
        - Tr: Text rendering mode (3 = invisible)
        - Tf: Font and size
        - Tm: Text matrix (absolute position)
        - Tj: Show string
        """
        if not placements:
            return []

        render_mode = 3 if self.text_opacity <= 0 else 0
        content = [b'q', b'/GS0 gs', b'BT', f'{render_mode} Tr'.encode('latin-1')]

        for placement in placements:
            encoded = encode_pdf_string(placement.text)
            if not encoded:
                continue
            content.append(f'/F1 {placement.font_size:.2f} Tf'.encode('latin-1'))
            content.append(f'1 0 0 1 {placement.x:.2f} {placement.y:.2f} Tm'.encode('latin-1'))
            content.append(b'(' + encoded + b') Tj')

        content.extend([b'ET', b'Q'])
        return content

    def _build_image_layer(self, width: float, height: float, x: float, y: float) -> List[bytes]:
        """
        Draw XObject /Im1 scaled to width x height at (x, y).

        - q/Q: Save/restore graphics state
        - cm: Concatenate matrix [w 0 0 h x y]
        - Do: Paint XObject
        """
        return [
            b'q',
            f'{width:.2f} 0 0 {height:.2f} {x:.2f} {y:.2f} cm'.encode('latin-1'),
            b'/Im1 Do',
            b'Q'
        ]

    def _create_page(
        self,
        pdf: pikepdf.Pdf,
        image: Image.Image,
        page_size: Tuple[float, float],
        content_stream: bytes,
        with_text: bool
    ) -> pikepdf.Page:
        """Append a page with the image XObject, font and ExtGState resources."""
        image_obj = self._embed_image(pdf, image)

        resources = pikepdf.Dictionary(XObject=pikepdf.Dictionary(Im1=image_obj))

        if with_text:
            # Base 14 font - no embedding needed
            font_dict = pikepdf.Dictionary(
                Type=pikepdf.Name.Font,
                Subtype=pikepdf.Name.Type1,
                BaseFont=pikepdf.Name(f'/{self.font_name}'),
                Encoding=pikepdf.Name.WinAnsiEncoding
            )
            graphics_state = pikepdf.Dictionary(
                Type=pikepdf.Name.ExtGState,
                ca=self.text_opacity,
                CA=self.text_opacity
            )
            resources.Font = pikepdf.Dictionary(F1=pdf.make_indirect(font_dict))
            resources.ExtGState = pikepdf.Dictionary(GS0=pdf.make_indirect(graphics_state))

        content_obj = pdf.make_indirect(pikepdf.Stream(pdf, content_stream))

        page = pdf.add_blank_page(page_size=page_size)
        page.Resources = pdf.make_indirect(resources)
        page.Contents = content_obj
        return page

    def _embed_image(self, pdf: pikepdf.Pdf, image: Image.Image) -> pikepdf.Object:
        """
        Image XObject with raw samples; pikepdf Flate-compresses it on save.
        """
        if image.mode in ('L', '1'):
            image = image.convert('L')
            color_space = pikepdf.Name.DeviceGray
        else:
            image = convert_to_rgb(image)
            color_space = pikepdf.Name.DeviceRGB

        image_stream = pikepdf.Stream(pdf, image.tobytes())
        image_stream.stream_dict[pikepdf.Name.Type] = pikepdf.Name.XObject
        image_stream.stream_dict[pikepdf.Name.Subtype] = pikepdf.Name.Image
        image_stream.stream_dict[pikepdf.Name.Width] = image.width
        image_stream.stream_dict[pikepdf.Name.Height] = image.height
        image_stream.stream_dict[pikepdf.Name.ColorSpace] = color_space
        image_stream.stream_dict[pikepdf.Name.BitsPerComponent] = 8
        return pdf.make_indirect(image_stream)

    @property
    def name(self) -> str:
        """Engine identifier."""
        return "pikepdf"


def convert_to_rgb(img: Image.Image) -> Image.Image:
    """Convert image to RGB mode, compositing transparency onto white."""
    if img.mode == 'RGB':
        return img
    if img.mode == 'P':
        img = img.convert('RGBA')
    if img.mode in ('RGBA', 'LA'):
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img.convert('RGBA'), mask=img.split()[-1])
        return background
    return img.convert('RGB')


def encode_pdf_string(text: str) -> bytes:
    """
    Encode text for a PDF literal string shown with a WinAnsiEncoding font.

    Characters outside cp1252 are dropped; the word stays searchable by its
    remaining characters. Backslash and parentheses are escaped, control
    characters written as octal escapes.
    """
    raw = text.encode('cp1252', errors='ignore')
    out = bytearray()
    for byte in raw:
        if byte in (0x5C, 0x28, 0x29):  # \ ( )
            out.extend(b'\\' + bytes([byte]))
        elif byte < 0x20 or byte == 0x7F:
            out.extend(f'\\{byte:03o}'.encode('ascii'))
        else:
            out.append(byte)
    return bytes(out)
