"""CSV payload decoding into row dictionaries."""

import csv
import io

from statcache.errors import ParseFailure
from statcache.store.models import Row


DEFAULT_ENCODINGS = ("utf-8-sig", "latin-1")


def decode_text(payload: bytes, encodings: tuple[str, ...] = DEFAULT_ENCODINGS) -> str:
    """Decode bytes trying each encoding in turn.

    Raises:
        ParseFailure: If no encoding applies.
    """
    for encoding in encodings:
        try:
            return payload.decode(encoding)
        except UnicodeDecodeError:
            continue
    msg = f"Payload is not decodable as any of {', '.join(encodings)}"
    raise ParseFailure(msg)


def parse_csv_rows(
    payload: bytes,
    resource_id: str | None = None,
    encodings: tuple[str, ...] = DEFAULT_ENCODINGS,
) -> list[Row]:
    """Parse a CSV payload with a header line into rows.

    Args:
        payload: Raw CSV bytes.
        resource_id: Resource for error reporting.
        encodings: Encodings to try, in order.

    Returns:
        One dict per data line, keyed by header.

    Raises:
        ParseFailure: If the payload is empty, undecodable or malformed.
    """
    text = decode_text(payload, encodings)
    if not text.strip():
        raise ParseFailure("empty CSV payload", resource_id=resource_id)
    try:
        sample = text[:4096]
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel
    try:
        reader = csv.DictReader(io.StringIO(text), dialect=dialect)
        if not reader.fieldnames:
            raise ParseFailure("CSV payload has no header", resource_id=resource_id)
        return [dict(row) for row in reader]
    except csv.Error as e:
        msg = f"Malformed CSV: {e}"
        raise ParseFailure(msg, resource_id=resource_id) from e
