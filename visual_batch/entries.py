from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import urlparse

from visual_batch.errors import SourceNotFoundError
from visual_batch.models import Entry

logger = logging.getLogger(__name__)

URL_COLUMN = "url"
LABEL_COLUMN = "name"


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _is_well_formed(url: str) -> bool:
    parsed = urlparse(url)
    if not parsed.scheme:
        return False
    return bool(parsed.netloc) or parsed.scheme == "file"


def _row_to_entry(row: Dict[str, Optional[str]], line_no: int) -> Optional[Entry]:
    url = _clean(row.get(URL_COLUMN))
    label = _clean(row.get(LABEL_COLUMN))
    if not url or not label:
        logger.debug("Skipping row %d: missing %s", line_no, URL_COLUMN if not url else LABEL_COLUMN)
        return None
    if not _is_well_formed(url):
        logger.debug("Skipping row %d: malformed url %r", line_no, url)
        return None
    return Entry(url=url, label=label)


def read_entries(source: Union[str, Path]) -> List[Entry]:
    """Read ``url,name`` rows from a CSV file into ordered entries.

    Rows missing either column value are skipped. Duplicate URLs are kept
    as independent entries. Raises SourceNotFoundError when the file is
    absent or cannot be read.
    """
    path = Path(source)
    if not path.is_file():
        raise SourceNotFoundError(f"entry source not found: {path}")

    entries: List[Entry] = []
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            for row in reader:
                entry = _row_to_entry(row, reader.line_num)
                if entry is not None:
                    entries.append(entry)
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise SourceNotFoundError(f"entry source unreadable: {path}: {exc}") from exc

    logger.info("Read %d entries from %s", len(entries), path)
    return entries
