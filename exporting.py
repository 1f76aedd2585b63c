import csv
import datetime as dt
import io
import json
from typing import Any, Iterable, List, Mapping, Optional, Sequence


def csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, default=str)
    return str(value)


def to_csv(rows: Iterable[Mapping[str, Any]], headers: Optional[Sequence[str]] = None) -> str:
    """Render flat records as CSV text.

    The header row is ``headers`` or the keys of the first record. Fields
    holding a comma, quote or newline are quoted with inner quotes doubled.
    An empty input gives an empty string.
    """
    rows = list(rows)
    if not rows and not headers:
        return ""
    columns: List[str] = list(headers) if headers else list(rows[0].keys())

    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([csv_value(row.get(c)) for c in columns])
    return buf.getvalue()
