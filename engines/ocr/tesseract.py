"""
Tesseract OCR engine for Folio

Runs the tesseract binary with hOCR output and turns the hOCR document into
RecognizedWord values. The engine's working image size is taken from the
ocr_page bbox, so callers can rescale word boxes if Tesseract did not see
the image at the size they embedded it.

Scratch files (input PNG, hOCR output) come from the TempArtifactStore, so
concurrent requests never share a path.
"""

import subprocess
from typing import List, Optional

from lxml import etree
from PIL import Image

from . import register_ocr_engine
from .base import BoundingBox, OCRResult, ProgressCallback, RecognizedWord
from errors import IOFailure, OCREngineUnavailable
from utilities import Print

HOCR_NS = {'x': 'http://www.w3.org/1999/xhtml'}


@register_ocr_engine("tesseract")
class TesseractEngineFactory:
    """Factory for creating Tesseract engine instances."""

    @staticmethod
    def create(config: dict, artifacts):
        """
        Create a Tesseract engine instance.

        Args:
            config: Configuration dictionary with:
                - binary_path: Path to tesseract binary (default: 'tesseract')
                - oem: OCR Engine Mode (default: 1 for LSTM only)
                - psm: Page Segmentation Mode (default: 3 for auto)
                - language: Language code (default: 'eng')
                - timeout: Seconds per page (default: 120)
            artifacts: TempArtifactStore for scratch files
        """
        return TesseractEngine(config, artifacts)


class TesseractEngine:
    """Tesseract OCR via the command line binary and its hOCR renderer."""

    def __init__(self, config: dict, artifacts):
        self.config = config
        self.artifacts = artifacts
        self.tesseract_path = config.get('binary_path', 'tesseract')
        self.oem = config.get('oem', 1)
        self.psm = config.get('psm', 3)
        self.language = config.get('language', 'eng')
        self.timeout = config.get('timeout', 120)
        self._version = None

    def initialize(self) -> None:
        """
        Verify Tesseract installation and language data.

        Raises:
            OCREngineUnavailable: If Tesseract is not found or the language is missing
        """
        try:
            result = subprocess.run(
                [self.tesseract_path, '--version'],
                capture_output=True,
                text=True,
                check=True,
                timeout=10
            )
        except FileNotFoundError:
            raise OCREngineUnavailable(
                f"Tesseract not found at '{self.tesseract_path}'",
                detail="Install: brew install tesseract (macOS) or apt-get install tesseract-ocr (Linux)"
            )
        except subprocess.TimeoutExpired:
            raise OCREngineUnavailable(
                f"Tesseract command timed out. Check installation at: {self.tesseract_path}"
            )
        except (OSError, subprocess.CalledProcessError) as e:
            raise OCREngineUnavailable("Tesseract initialization failed", detail=str(e))

        # Older releases print the version banner on stderr
        banner = (result.stdout or result.stderr).strip()
        self._version = banner.split('\n')[0] if banner else 'tesseract'
        Print("SUCCESS", f"Found {self._version}")

        self._verify_language(self.language)

    def _verify_language(self, language: str) -> None:
        """
        Verify that every '+'-joined language in `language` is installed.

        Raises:
            OCREngineUnavailable: If a language is not available
        """
        try:
            result = subprocess.run(
                [self.tesseract_path, '--list-langs'],
                capture_output=True,
                text=True,
                check=True,
                timeout=10
            )
        except subprocess.TimeoutExpired:
            Print("WARNING", "Could not verify language (timeout), proceeding anyway")
            return
        except subprocess.CalledProcessError as e:
            Print("WARNING", f"Could not verify language: {e.stderr}")
            return

        # Format is:
        # List of available languages in "/usr/share/tessdata/" (2):
        # eng
        # osd
        available = [
            line.strip() for line in result.stdout.split('\n')
            if line.strip() and not line.startswith('List of')
        ]

        missing = [lang for lang in language.split('+') if lang not in available]
        if missing:
            raise OCREngineUnavailable(
                f"Tesseract language '{'+'.join(missing)}' not available",
                detail=f"Available: {', '.join(available)}"
            )

        Print("DEBUG", f"Language '{language}' verified")

    def recognize(
        self,
        image: Image.Image,
        progress: Optional[ProgressCallback] = None
    ) -> OCRResult:
        """
        Run Tesseract on one image and parse its hOCR.

        Args:
            image: PIL Image to OCR
            progress: Optional callback receiving 0 before and 100 after recognition

        Returns:
            OCRResult with words and Tesseract's working image size

        Raises:
            RuntimeError: If Tesseract fails or produces no hOCR
            IOFailure: If the input image cannot be written for Tesseract
        """
        if progress:
            progress(0)

        if image.mode not in ('RGB', 'L', '1'):
            image = image.convert('RGB')

        with self.artifacts.scoped('.png') as image_file, self.artifacts.scoped('.hocr') as hocr_file:
            try:
                image.save(image_file.path, format='PNG')
            except OSError as e:
                raise IOFailure(f"Could not write OCR input {image_file.path.name}", detail=str(e))

            # Tesseract appends the .hocr extension itself
            cmd = [
                self.tesseract_path,
                str(image_file.path),
                str(hocr_file.path.with_suffix('')),
                '-l', self.language,
                '--oem', str(self.oem),
                '--psm', str(self.psm),
                'hocr'
            ]
            Print("DEBUG", f"Running: {' '.join(cmd)}")

            try:
                # Tesseract may return non-zero on warnings; judge by the output file
                result = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
            except subprocess.TimeoutExpired:
                raise RuntimeError(f"OCR timed out after {self.timeout} seconds")
            except OSError as e:
                raise RuntimeError(f"Could not run Tesseract: {e}")

            if result.stderr:
                for line in result.stderr.decode('utf-8', errors='replace').split('\n'):
                    if line and not line.startswith('Tesseract Open Source'):
                        Print("DEBUG", f"Tesseract: {line}")

            content = hocr_file.read_bytes()
            if not content:
                raise RuntimeError(
                    f"Tesseract did not produce hOCR output (exit code {result.returncode})"
                )

        ocr_result = parse_hocr(content)
        if ocr_result.image_size is None:
            ocr_result.image_size = image.size

        Print("DEBUG", f"Recognized {len(ocr_result.words)} words on {ocr_result.image_size[0]}x{ocr_result.image_size[1]} px")

        if progress:
            progress(100)
        return ocr_result

    @property
    def name(self) -> str:
        """Engine identifier."""
        return "tesseract"

    @property
    def version(self) -> Optional[str]:
        """Tesseract version string."""
        return self._version


def parse_hocr(content: bytes) -> OCRResult:
    """
    Parse a Tesseract hOCR document.

    Args:
        content: Raw hOCR bytes

    Returns:
        OCRResult; image_size is None when the document has no ocr_page bbox

    Raises:
        RuntimeError: If the document cannot be parsed at all
    """
    try:
        try:
            root = etree.fromstring(content)
        except etree.XMLSyntaxError:
            # Fall back to HTML parser for malformed documents
            root = etree.fromstring(content, etree.HTMLParser(recover=True))
    except (etree.XMLSyntaxError, ValueError) as e:
        raise RuntimeError(f"Failed to parse hOCR: {e}")

    if root is None:
        raise RuntimeError("Failed to parse hOCR: empty document")

    image_size = None
    pages = _find_class(root, 'div', 'ocr_page')
    if pages:
        page_box = _parse_title(pages[0].get('title', '')).get('bbox')
        if page_box and len(page_box) == 4:
            image_size = (int(page_box[2] - page_box[0]), int(page_box[3] - page_box[1]))

    words: List[RecognizedWord] = []
    for element in _find_class(root, 'span', 'ocrx_word'):
        text = ''.join(element.itertext()).strip()
        if not text:
            continue
        props = _parse_title(element.get('title', ''))
        box = props.get('bbox')
        if not box or len(box) != 4:
            continue
        confidence = props.get('x_wconf', [0.0])[0]
        words.append(RecognizedWord(
            text=text,
            confidence=float(confidence),
            bbox=BoundingBox(*box)
        ))

    return OCRResult(words=words, image_size=image_size)


def _find_class(root, tag: str, css_class: str) -> list:
    found = root.xpath(f'//x:{tag}[@class="{css_class}"]', namespaces=HOCR_NS)
    if not found:
        found = root.xpath(f'//*[@class="{css_class}"]')
    return found


def _parse_title(title: str) -> dict:
    """
    Parse an hOCR title attribute into numeric properties.

    "bbox 232 133 250 162; x_wconf 96" -> {'bbox': [232.0, 133.0, 250.0, 162.0], 'x_wconf': [96.0]}
    Non-numeric properties (image "...") are skipped.
    """
    props = {}
    for part in title.split(';'):
        tokens = part.strip().split()
        if len(tokens) < 2:
            continue
        try:
            props[tokens[0]] = [float(t) for t in tokens[1:]]
        except ValueError:
            continue
    return props
