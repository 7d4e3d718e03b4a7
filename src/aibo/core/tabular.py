"""CSV rendering for tool responses."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence


def render_csv(header: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    """Render *rows* under *header* followed by a ``# total=<n>`` footer.

    ``None`` renders as an empty field. Fields holding a comma, a double quote
    or a line break are quoted with embedded quotes doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(header)
    total = 0
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
        total += 1
    return f"{buffer.getvalue()}# total={total}"
