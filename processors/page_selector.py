"""
Page selection parsing.

Two input forms are supported:

- range specs for split/extract: "1-3,5,8-10" (1-based, inclusive). The
  result is the ascending, de-duplicated set of zero-based indices.
  Page numbers beyond the document are dropped; a reversed range such as
  "5-2" selects nothing and is not an error.
- order specs for reorder: a JSON list of zero-based indices, e.g. "[2,0,1]".
  Order and repeats are kept exactly; any index outside the document is
  rejected.
"""

import json
import re
from typing import List, Sequence, Union

from errors import InvalidInput, InvalidRange, OutOfBounds
from utilities import Print

_TOKEN = re.compile(r'^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$')


def parse_range(spec: str, page_count: int) -> List[int]:
    """
    Parse a page range spec into zero-based indices.

    Args:
        spec: Comma separated page numbers and ranges, e.g. "1-3,5,8-10"
        page_count: Number of pages in the source document

    Returns:
        Sorted unique zero-based indices, each in [0, page_count)

    Raises:
        InvalidRange: If the spec is empty or a token is not N or N-M
    """
    if spec is None or not str(spec).strip():
        raise InvalidRange("Missing page range")

    selected = set()
    for token in str(spec).split(','):
        match = _TOKEN.match(token)
        if not match:
            raise InvalidRange("Invalid page range", detail=f"cannot parse '{token.strip()}' in '{spec}'")

        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) is not None else start

        # Clamp before expanding so "1-999999999" stays cheap
        first = max(start, 1)
        last = min(end, page_count)
        selected.update(range(first - 1, last))

    dropped = [t for t in str(spec).split(',') if _out_of_document(t, page_count)]
    if dropped:
        Print("DEBUG", f"Ignoring pages outside 1-{page_count}: {', '.join(t.strip() for t in dropped)}")

    return sorted(selected)


def _out_of_document(token: str, page_count: int) -> bool:
    match = _TOKEN.match(token)
    if not match:
        return False
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) is not None else start
    return start < 1 or end > page_count


def parse_order(order: Union[str, Sequence[int]], page_count: int) -> List[int]:
    """
    Parse an explicit page order.

    Args:
        order: JSON list of zero-based indices, or an already decoded list
        page_count: Number of pages in the source document

    Returns:
        The indices, in the given order, repeats kept

    Raises:
        InvalidInput: If the order is missing, not JSON, not a list, or holds non-integers
        OutOfBounds: If any index is < 0 or >= page_count
    """
    if order is None or (isinstance(order, str) and not order.strip()):
        raise InvalidInput("Missing page order")

    if isinstance(order, str):
        try:
            order = json.loads(order)
        except json.JSONDecodeError as e:
            raise InvalidInput("Page order is not valid JSON", detail=str(e))

    if not isinstance(order, (list, tuple)):
        raise InvalidInput("Page order must be a list of page indices")

    indices = []
    for value in order:
        # bool is an int subclass; true/false are not page numbers
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidInput("Page order must contain only integers", detail=f"got {value!r}")
        if value < 0 or value >= page_count:
            raise OutOfBounds(
                "Invalid page order",
                detail=f"index {value} outside 0-{page_count - 1}" if page_count else "document has no pages"
            )
        indices.append(value)

    return indices
