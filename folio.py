#!/usr/bin/env python3
"""
Folio v0.3: PDF merge, split, reorder, compression and OCR pipeline.

This is the main orchestrator that wires together all Folio components.
Every operation is a stateless transform: bytes in, bytes out, with
temporary files only for the external tools.

Architecture:
- Factory pattern for engines (OCR, PDF, compression)
- Protocol-based contracts for type safety
- One DocumentAssembler for merge/split/reorder
- Optional Ghostscript pass at the end of every operation

Request lifecycle:
    RECEIVED -> VALIDATED -> TRANSFORMED -> (COMPRESSED) -> DELIVERED
    any stage -> FAILED

Usage:
    from folio import FolioPipeline

    pipeline = FolioPipeline()
    pipeline.initialize()
    merged = pipeline.merge([pdf_a, pdf_b], preset="ebook")

    result = pipeline.run("split", file=pdf_bytes, range_spec="1-3,5")
    if not result.ok:
        print(result.error)   # {'kind': ..., 'message': ..., 'detail': ...}

Or from command line:
    python folio.py merge a.pdf b.pdf -o merged.pdf --preset ebook
"""

import io
import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from PIL import Image, UnidentifiedImageError

from artifacts import TempArtifactStore
from engines.compression import CompressionPreset, get_compressor
from engines.ocr import get_ocr_engine
from engines.pdf import get_pdf_engine
from errors import (
    CompressionFailed,
    EmptyInput,
    FolioError,
    IOFailure,
    InvalidInput,
    OCREngineUnavailable,
    OutOfBounds,
    ToolUnavailable,
)
from processors.assembler import DocumentAssembler
from processors.ocr_compositor import DEFAULT_OCR_DPI, OCRCompositor, rasterize
from utilities import CPU_and_Mem_usage, Print, format_size, is_verbose, set_verbose

SUPPORTED_IMAGE_FORMATS = ('PNG', 'JPEG')


class RequestState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    TRANSFORMED = "transformed"
    COMPRESSED = "compressed"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class RequestTrace:
    """States visited and statistics for one request."""
    operation: str
    states: List[RequestState] = field(default_factory=lambda: [RequestState.RECEIVED])
    stats: dict = field(default_factory=dict)

    def advance(self, state: RequestState) -> None:
        self.states.append(state)
        Print("DEBUG", f"{self.operation}: {state.value}")


@dataclass
class PipelineResult:
    """
    Outcome of FolioPipeline.run().

    Exactly one of payload / error is set.
    """
    operation: str
    payload: Optional[bytes] = None
    error: Optional[dict] = None
    states: List[RequestState] = field(default_factory=list)
    stats: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def compression_info(self) -> Optional[str]:
        """Human-readable size reduction, None when no compression pass ran."""
        if 'compressed_size' not in self.stats:
            return None
        before = self.stats['uncompressed_size']
        after = self.stats['compressed_size']
        return (
            f"Reduced from {before / (1024 * 1024):.2f} MB -> {after / (1024 * 1024):.2f} MB "
            f"({self.stats['reduction_pct']:.1f}% smaller)"
        )


class FolioPipeline:
    """
    Main orchestrator for Folio document operations.

    Operations (all return PDF bytes or raise FolioError):
    - merge(files, preset="screen")
    - split(file, range_spec, preset=None)
    - reorder(file, order_spec, preset=None)
    - compress(file, preset="default")
    - ocrize(file, preset=None)
    - images_to_pdf(images, preset="screen")

    The pipeline holds engines and configuration only; requests share no
    mutable state, so one instance can serve concurrent requests (see submit()).

    Attributes:
        config: Loaded configuration dictionary
        pdf_engine: Initialized PDF engine instance
        compressor: Initialized document compressor
        ocr_engine: OCR engine, initialized on first OCR request
        artifacts: Temporary file store
        assembler: DocumentAssembler over pdf_engine
    """

    OPERATIONS = ('merge', 'split', 'reorder', 'compress', 'ocrize', 'images_to_pdf')

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[dict] = None):
        """
        Initialize pipeline with configuration.

        Args:
            config_path: Path to config.json. If None, uses default location.
            overrides: Nested dict merged over the loaded configuration
        """
        self.config = self._load_config(config_path)
        if overrides:
            _deep_update(self.config, overrides)

        self.pdf_engine = None
        self.compressor = None
        self.ocr_engine = None
        self.artifacts = None
        self.assembler = None
        self._ocr_engine_name = "tesseract"
        self._ocr_lock = threading.Lock()
        self._executor = None
        self._initialized = False

    def _load_config(self, config_path: Optional[Path]) -> dict:
        """Load configuration from JSON file."""
        if config_path is None:
            config_path = Path(__file__).parent / "config" / "config.json"
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}\n"
                f"Create config/config.json or specify path with config_path parameter."
            )

        with open(config_path) as f:
            config = json.load(f)

        for section in ('logging', 'ocr_engines', 'pdf_engines', 'compression', 'processing'):
            config.setdefault(section, {})
        return config

    def initialize(
        self,
        pdf_engine_name: str = "pikepdf",
        compressor_name: str = "ghostscript",
        ocr_engine_name: str = "tesseract"
    ) -> None:
        """
        Initialize the PDF engine, compressor and temp store.

        The OCR engine is only started by the first OCR request, so merge/split
        keep working on hosts without Tesseract.

        Log verbosity is process-wide (utilities.set_verbose) and is left to
        the caller; the CLI applies logging.verbose.

        Raises:
            ValueError: If a specified engine is not registered
            IOFailure: If the temp directory cannot be created
        """
        Print("STARTING", f"Initializing Folio v{self.config.get('version', '0.3.0')} pipeline")

        processing = self.config['processing']

        temp_dir = processing.get('temp_dir')
        self.artifacts = TempArtifactStore(Path(temp_dir) if temp_dir else None)
        self.artifacts.sweep(processing.get('orphan_max_age', 3600))
        Print("DEBUG", f"Temp directory: {self.artifacts.base_dir}")

        pdf_config = self.config['pdf_engines'].get(pdf_engine_name, {})
        self.pdf_engine = get_pdf_engine(pdf_engine_name, pdf_config)
        Print("SUCCESS", f"PDF engine: {self.pdf_engine.name}")

        comp_config = self.config['compression'].get(compressor_name, {})
        self.compressor = get_compressor(compressor_name, comp_config)
        Print("SUCCESS", f"Compressor: {self.compressor.name}")

        self.assembler = DocumentAssembler(self.pdf_engine)
        self._ocr_engine_name = ocr_engine_name

        self._initialized = True
        Print("SUCCESS", "Pipeline initialized")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Pipeline not initialized. Call initialize() first.")

    def _ensure_ocr_engine(self):
        """Create and verify the OCR engine once; later calls reuse it."""
        with self._ocr_lock:
            if self.ocr_engine is None:
                ocr_config = self.config['ocr_engines'].get(self._ocr_engine_name, {})
                engine = get_ocr_engine(self._ocr_engine_name, ocr_config, self.artifacts)
                engine.initialize()
                self.ocr_engine = engine
                Print("SUCCESS", f"OCR engine: {engine.name}")
        return self.ocr_engine

    # =====================================================================
    # Operations
    # =====================================================================

    def merge(
        self,
        files: Sequence[bytes],
        preset: Optional[str] = "screen",
        trace: Optional[RequestTrace] = None
    ) -> bytes:
        """
        Concatenate PDFs in upload order.

        Args:
            files: PDF documents as bytes
            preset: Compression preset, None to skip compression

        Raises:
            EmptyInput: If no files are given
            InvalidInput: If a file is not a PDF or the preset is unknown
        """
        self._require_initialized()
        trace = trace or RequestTrace("merge")

        preset = self._parse_preset(preset)
        if not files:
            raise EmptyInput("No files uploaded")
        documents = [self._load_pdf(data, f"file {i + 1}") for i, data in enumerate(files)]
        trace.stats['input_size'] = sum(len(data) for data in files)
        trace.advance(RequestState.VALIDATED)

        merged = self.assembler.merge(documents)
        return self._finish(merged, preset, trace)

    def split(
        self,
        file: bytes,
        range_spec: str,
        preset: Optional[str] = None,
        trace: Optional[RequestTrace] = None
    ) -> bytes:
        """
        Extract pages selected by a range spec like "1-3,5,8-10" (1-based).

        Raises:
            InvalidInput: If file or range is missing, or the preset is unknown
            InvalidRange: If the range spec cannot be parsed
        """
        self._require_initialized()
        trace = trace or RequestTrace("split")

        preset = self._parse_preset(preset)
        if range_spec is None or not str(range_spec).strip():
            raise InvalidInput("Missing file or range")
        document = self._load_pdf(file)
        trace.stats['input_size'] = len(file)

        extracted = self.assembler.split(document, str(range_spec).strip())
        trace.advance(RequestState.VALIDATED)
        return self._finish(extracted, preset, trace)

    def reorder(
        self,
        file: bytes,
        order_spec: Union[str, Sequence[int]],
        preset: Optional[str] = None,
        trace: Optional[RequestTrace] = None
    ) -> bytes:
        """
        Rearrange pages by a zero-based JSON order, e.g. "[2, 0, 1]".

        Raises:
            InvalidInput: If file or order is missing or malformed
            OutOfBounds: If an index is outside the document
        """
        self._require_initialized()
        trace = trace or RequestTrace("reorder")

        preset = self._parse_preset(preset)
        if order_spec is None:
            raise InvalidInput("Missing file or order")
        document = self._load_pdf(file)
        trace.stats['input_size'] = len(file)

        reordered = self.assembler.reorder(document, order_spec)
        trace.advance(RequestState.VALIDATED)
        return self._finish(reordered, preset, trace)

    def compress(
        self,
        file: bytes,
        preset: Optional[str] = "default",
        trace: Optional[RequestTrace] = None
    ) -> bytes:
        """
        Run a PDF through the compressor unchanged otherwise.

        Raises:
            InvalidInput: If the file is missing or the preset unknown
            ToolUnavailable / CompressionFailed: From the compressor
        """
        self._require_initialized()
        trace = trace or RequestTrace("compress")

        preset = self._parse_preset(preset)
        if preset is None:
            raise InvalidInput("Missing compression preset")
        if not file:
            raise InvalidInput("No file uploaded")
        trace.stats['input_size'] = len(file)
        trace.advance(RequestState.VALIDATED)
        trace.advance(RequestState.TRANSFORMED)

        output = self._compress_bytes(file, preset, trace)
        trace.advance(RequestState.DELIVERED)
        return output

    def ocrize(
        self,
        file: bytes,
        preset: Optional[str] = None,
        progress: Optional[Callable[[int], None]] = None,
        trace: Optional[RequestTrace] = None
    ) -> bytes:
        """
        Make a scanned PDF or a PNG/JPEG image searchable.

        Args:
            file: PDF or image bytes
            preset: Compression preset, None to skip compression
            progress: Optional callback receiving 0-100 during recognition

        Raises:
            InvalidInput: If the file is neither a PDF nor a PNG/JPEG image
            OCREngineUnavailable: If Tesseract (or poppler for PDFs) is missing
        """
        self._require_initialized()
        trace = trace or RequestTrace("ocrize")

        preset = self._parse_preset(preset)
        if not file:
            raise InvalidInput("Please upload a scanned PDF or image")

        is_pdf = _looks_like_pdf(file)
        if is_pdf:
            self._load_pdf(file)
            images = None
        else:
            images = [self._open_image(file)]
        trace.stats['input_size'] = len(file)
        trace.advance(RequestState.VALIDATED)

        engine = self._ensure_ocr_engine()
        if is_pdf:
            images = rasterize(
                file,
                dpi=self.config['processing'].get('ocr_dpi', DEFAULT_OCR_DPI),
                timeout=self.config['processing'].get('render_timeout')
            )

        processing = self.config['processing']
        compositor = OCRCompositor(
            engine,
            self.pdf_engine,
            font_size_ratio=processing.get('font_size_ratio', 0.9),
            min_font_size=processing.get('min_font_size', 6)
        )
        document = compositor.compose(images, progress=progress)
        return self._finish(document, preset, trace)

    def images_to_pdf(
        self,
        images: Sequence[bytes],
        preset: Optional[str] = "screen",
        trace: Optional[RequestTrace] = None
    ) -> bytes:
        """
        One page per PNG/JPEG image, aspect-fit and centred on A4.

        Raises:
            EmptyInput: If no images are given
            InvalidInput: If an image is unreadable or not PNG/JPEG
        """
        self._require_initialized()
        trace = trace or RequestTrace("images_to_pdf")

        preset = self._parse_preset(preset)
        if not images:
            raise EmptyInput("Please select one or more images first")
        opened = [self._open_image(data, f"image {i + 1}") for i, data in enumerate(images)]
        trace.stats['input_size'] = sum(len(data) for data in images)
        trace.advance(RequestState.VALIDATED)

        document = self.pdf_engine.new_document()
        for image in opened:
            self.pdf_engine.create_fitted_image_page(document, image)
        return self._finish(document, preset, trace)

    # =====================================================================
    # Request wrappers
    # =====================================================================

    def run(self, operation: str, **kwargs) -> PipelineResult:
        """
        Run an operation and capture its outcome instead of raising.

        Args:
            operation: One of OPERATIONS
            **kwargs: Arguments for that operation

        Returns:
            PipelineResult with payload or structured error {kind, message, detail}
        """
        if operation not in self.OPERATIONS:
            error = InvalidInput(f"Unknown operation: '{operation}'", detail=f"Available: {', '.join(self.OPERATIONS)}")
            return PipelineResult(operation, error=error.to_dict(), states=[RequestState.RECEIVED, RequestState.FAILED])

        trace = RequestTrace(operation)
        start_time = datetime.now()
        Print("STATE", f"Request: {operation}")

        try:
            payload = getattr(self, operation)(trace=trace, **kwargs)
        except FolioError as e:
            trace.advance(RequestState.FAILED)
            Print("FAILURE", f"{operation} failed ({e.kind}): {e}")
            return PipelineResult(operation, error=e.to_dict(), states=trace.states, stats=trace.stats)

        trace.stats['processing_time'] = (datetime.now() - start_time).total_seconds()
        Print("COMPLETED", f"{operation}: {format_size(len(payload))} in {trace.stats['processing_time']:.1f}s")
        return PipelineResult(operation, payload=payload, states=trace.states, stats=trace.stats)

    def submit(self, operation: str, **kwargs) -> "Future[PipelineResult]":
        """Run an operation on the worker pool; each request owns its own artifacts and subprocess."""
        self._require_initialized()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config['processing'].get('max_workers', 4),
                thread_name_prefix="folio"
            )
        return self._executor.submit(self.run, operation, **kwargs)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "FolioPipeline":
        if not self._initialized:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =====================================================================
    # Helpers
    # =====================================================================

    def _parse_preset(self, preset) -> Optional[CompressionPreset]:
        if preset is None:
            return None
        return CompressionPreset.parse(preset)

    def _load_pdf(self, data: bytes, label: str = "file"):
        if not data:
            raise InvalidInput("No file uploaded" if label == "file" else f"Empty {label}")
        try:
            return self.pdf_engine.load(data)
        except InvalidInput as e:
            raise InvalidInput(f"{label.capitalize()}: {e.message}", detail=e.detail)

    def _open_image(self, data: bytes, label: str = "image") -> Image.Image:
        if not data:
            raise InvalidInput(f"Empty {label}")
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except Image.DecompressionBombError as e:
            raise InvalidInput(f"Image is too large: {label}", detail=str(e))
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidInput(f"Could not read {label}", detail=str(e))
        if image.format not in SUPPORTED_IMAGE_FORMATS:
            raise InvalidInput("Unsupported image format. Use PNG or JPG.", detail=f"{label}: {image.format}")
        return image

    def _finish(self, document, preset: Optional[CompressionPreset], trace: RequestTrace) -> bytes:
        """Serialize, optionally compress, record stats."""
        trace.stats['pages'] = self.pdf_engine.page_count(document)
        output = self.pdf_engine.save(document)
        trace.advance(RequestState.TRANSFORMED)

        if preset is not None:
            output = self._compress_bytes(output, preset, trace)

        trace.stats['output_size'] = len(output)
        trace.advance(RequestState.DELIVERED)
        return output

    def _compress_bytes(self, data: bytes, preset: CompressionPreset, trace: RequestTrace) -> bytes:
        """Write data to a temp file, run the compressor, read the result back."""
        with self.artifacts.scoped('.pdf') as source, self.artifacts.scoped('.pdf') as target:
            source.write_bytes(data)
            Print("PROGRESS", f"Compressing {format_size(len(data))} with preset '{preset.value}'")
            self.compressor.compress(source.path, target.path, preset)
            output = target.read_bytes()

        reduction = (1 - len(output) / len(data)) * 100 if data else 0.0
        trace.stats.update({
            'preset': preset.value,
            'uncompressed_size': len(data),
            'compressed_size': len(output),
            'reduction_pct': reduction,
        })
        trace.advance(RequestState.COMPRESSED)
        Print("INFO", f"Reduced from {format_size(len(data))} to {format_size(len(output))} ({reduction:.1f}% smaller)")
        return output


def _looks_like_pdf(data: bytes) -> bool:
    # Readers accept the header anywhere in the first 1024 bytes
    return b'%PDF-' in data[:1024]


def _deep_update(base: dict, overrides: dict) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value


def _collect_images(paths: List[Path]) -> List[Path]:
    """Expand folders into their image files, naturally sorted (page2 before page10)."""
    from natsort import natsorted

    exts = ('.png', '.jpg', '.jpeg')
    collected = []
    for path in paths:
        if path.is_dir():
            collected.extend(natsorted(
                (f for f in path.iterdir() if f.suffix.lower() in exts),
                key=lambda f: f.name
            ))
        else:
            collected.append(path)
    return collected


def main():
    """Command-line entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description='Folio v0.3: merge, split, reorder, compress and OCR PDFs',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python folio.py merge a.pdf b.pdf -o merged.pdf --preset ebook
  python folio.py split input.pdf "1-3,5,8-10" -o extract.pdf
  python folio.py reorder input.pdf "[2,0,1]" -o reordered.pdf
  python folio.py compress input.pdf -o small.pdf --preset screen
  python folio.py ocr scan.pdf -o searchable.pdf
  python folio.py images scans/ -o scans.pdf
        """
    )
    parser.add_argument('--config', type=Path, default=None, help='Path to config.json')
    parser.add_argument('--verbose', action='store_true', help='Show debug output')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('merge', help='Concatenate PDFs')
    p.add_argument('inputs', type=Path, nargs='+')
    p.add_argument('--preset', default='screen')

    p = sub.add_parser('split', help='Extract pages by range')
    p.add_argument('input', type=Path)
    p.add_argument('range', help='1-based pages, e.g. "1-3,5"')
    p.add_argument('--preset', default=None)

    p = sub.add_parser('reorder', help='Rearrange pages')
    p.add_argument('input', type=Path)
    p.add_argument('order', help='JSON list of zero-based indices, e.g. "[2,0,1]"')
    p.add_argument('--preset', default=None)

    p = sub.add_parser('compress', help='Shrink a PDF with Ghostscript')
    p.add_argument('input', type=Path)
    p.add_argument('--preset', default='default')

    p = sub.add_parser('ocr', help='Add an invisible text layer to a scanned PDF or image')
    p.add_argument('input', type=Path)
    p.add_argument('--preset', default=None)

    p = sub.add_parser('images', help='Convert images to an A4 PDF')
    p.add_argument('inputs', type=Path, nargs='+', help='Image files or folders')
    p.add_argument('--preset', default='screen')

    for command_parser in sub.choices.values():
        command_parser.add_argument('-o', '--output', type=Path, required=True, help='Output PDF file')

    args = parser.parse_args()

    try:
        pipeline = FolioPipeline(config_path=args.config)
        set_verbose(args.verbose or pipeline.config['logging'].get('verbose', False))
        pipeline.initialize()

        if args.command == 'merge':
            result = pipeline.run('merge', files=[p.read_bytes() for p in args.inputs], preset=args.preset)
        elif args.command == 'split':
            result = pipeline.run('split', file=args.input.read_bytes(), range_spec=args.range, preset=args.preset)
        elif args.command == 'reorder':
            result = pipeline.run('reorder', file=args.input.read_bytes(), order_spec=args.order, preset=args.preset)
        elif args.command == 'compress':
            result = pipeline.run('compress', file=args.input.read_bytes(), preset=args.preset)
        elif args.command == 'ocr':
            result = pipeline.run('ocrize', file=args.input.read_bytes(), preset=args.preset)
        else:
            images = _collect_images(args.inputs)
            result = pipeline.run('images_to_pdf', images=[p.read_bytes() for p in images], preset=args.preset)

        if not result.ok:
            error = result.error
            Print("FAILURE", f"{error['kind']}: {error['message']}")
            if error.get('detail'):
                Print("INFO", error['detail'])
            return 1 if error['kind'] in (InvalidInput.kind, 'InvalidRange', EmptyInput.kind, OutOfBounds.kind) else 2

        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_bytes(result.payload)

        Print("COMPLETED", f"Saved: {args.output} ({format_size(len(result.payload))}, {result.stats.get('pages', '?')} pages)")
        if result.compression_info:
            Print("INFO", result.compression_info)
        if is_verbose():
            Print("DEBUG", CPU_and_Mem_usage())

        return 0

    except FileNotFoundError as e:
        Print("FAILURE", str(e))
        return 1
    except (ToolUnavailable, CompressionFailed, OCREngineUnavailable, IOFailure, RuntimeError) as e:
        Print("FAILURE", str(e))
        return 2
    except KeyboardInterrupt:
        Print("WARNING", "Interrupted by user")
        return 130


if __name__ == "__main__":
    import sys
    sys.exit(main())
