"""
Document assembly: merge, split and reorder through one code path.

Every operation is expressed as a list of SourceRef (source document,
page index) pairs handed to assemble(), so all three copy pages with
exactly the same semantics: object-level copies, never re-rendered.
"""

from typing import Dict, NamedTuple, Sequence, Tuple, Union

import pikepdf

from errors import EmptyInput, OutOfBounds
from processors.page_selector import parse_order, parse_range
from utilities import Print


class SourceRef(NamedTuple):
    """Page `page` (zero-based) of source document number `source`."""
    source: int
    page: int


class DocumentAssembler:
    """
    Builds new documents from pages of existing ones.

    Attributes:
        pdf_engine: Document library used to create documents and copy pages
    """

    def __init__(self, pdf_engine):
        self.pdf_engine = pdf_engine

    def assemble(self, sources: Sequence[pikepdf.Pdf], order: Sequence[SourceRef]) -> pikepdf.Pdf:
        """
        Create a document holding exactly the referenced pages, in order.

        Args:
            sources: Source documents
            order: (source, page) references; repeats allowed

        Returns:
            New document

        Raises:
            EmptyInput: If sources is empty
            OutOfBounds: If a reference names a missing source or page
        """
        if not sources:
            raise EmptyInput("No documents supplied")

        output = self.pdf_engine.new_document()

        # Position in output of the first copy of each source page, keyed by
        # document identity so the same Pdf passed twice is still recognised
        copied: Dict[Tuple[int, int], int] = {}
        for source_index, page_index in order:
            if source_index < 0 or source_index >= len(sources):
                raise OutOfBounds(
                    "Source document index out of range",
                    detail=f"source {source_index}, {len(sources)} documents supplied"
                )
            key = (id(sources[source_index]), page_index)
            if key in copied:
                self.pdf_engine.duplicate_page(output, copied[key])
            else:
                self.pdf_engine.copy_pages(output, sources[source_index], [page_index])
                copied[key] = self.pdf_engine.page_count(output) - 1

        Print("DEBUG", f"Assembled {self.pdf_engine.page_count(output)} pages from {len(sources)} source(s)")
        return output

    def merge(self, sources: Sequence[pikepdf.Pdf]) -> pikepdf.Pdf:
        """All pages of source 0, then source 1, ... in upload order."""
        order = [
            SourceRef(source_index, page_index)
            for source_index, source in enumerate(sources)
            for page_index in range(self.pdf_engine.page_count(source))
        ]
        return self.assemble(sources, order)

    def split(self, source: pikepdf.Pdf, range_spec: str) -> pikepdf.Pdf:
        """Extract the pages selected by a range spec such as "1-3,5"."""
        indices = parse_range(range_spec, self.pdf_engine.page_count(source))
        if not indices:
            Print("WARNING", f"Range '{range_spec}' selects no pages")
        return self.assemble([source], [SourceRef(0, i) for i in indices])

    def reorder(self, source: pikepdf.Pdf, order_spec: Union[str, Sequence[int]]) -> pikepdf.Pdf:
        """Rearrange pages according to a zero-based JSON order list."""
        indices = parse_order(order_spec, self.pdf_engine.page_count(source))
        return self.assemble([source], [SourceRef(0, i) for i in indices])
