"""CSV extraction from downloaded zip archives."""

import zipfile
from pathlib import Path

import structlog

from statcache.errors import ParseFailure
from statcache.store.models import Row
from statcache.tabular import DEFAULT_ENCODINGS, parse_csv_rows


logger = structlog.get_logger()


def find_csv_member(archive: zipfile.ZipFile) -> str | None:
    """Name of the first CSV file in the archive, if any."""
    for name in sorted(archive.namelist()):
        if name.lower().endswith(".csv") and not name.startswith("__MACOSX/"):
            return name
    return None


def extract_csv_rows(
    zip_path: Path,
    member: str | None = None,
    encodings: tuple[str, ...] = DEFAULT_ENCODINGS,
) -> list[Row]:
    """Read rows from a CSV stored inside a zip archive.

    Args:
        zip_path: Archive on disk.
        member: CSV file to read; defaults to the first CSV found.
        encodings: Encodings to try, in order.

    Returns:
        Parsed rows.

    Raises:
        ParseFailure: If the archive is unreadable or holds no CSV.
    """
    try:
        with zipfile.ZipFile(zip_path) as archive:
            name = member or find_csv_member(archive)
            if name is None:
                msg = f"No CSV file found in {zip_path.name}"
                raise ParseFailure(msg, details={"path": str(zip_path)})
            payload = archive.read(name)
    except (zipfile.BadZipFile, KeyError, OSError) as e:
        msg = f"Cannot read archive {zip_path.name}: {e}"
        raise ParseFailure(msg, details={"path": str(zip_path)}) from e

    rows = parse_csv_rows(payload, encodings=encodings)
    logger.debug("archive_extracted", path=str(zip_path), member=name, rows=len(rows))
    return rows
