"""Participant roster reader (CSV export of the event sign-up sheet).

The sheet has one row per participant.  The profile link lives in one of a few
known column names; the display name column is optional.
"""

from dataclasses import dataclass
from pathlib import Path
import logging
from typing import List, Union

import pandas as pd

from etl.errors import ValidationError

logger = logging.getLogger(__name__)

URL_COLUMNS = ("Google Cloud Skills Boost Profile URL", "Profile URL", "profileUrl")
NAME_COLUMNS = ("User Name", "Name", "name")


@dataclass(frozen=True)
class RosterEntry:
    line: int  # 1-based line in the CSV file, header is line 1
    name: str
    profile_url: str


def read_roster(path: Union[str, Path]) -> List[RosterEntry]:
    """Return every roster row that carries a profile URL.

    Parameters
    ----------
    path : Union[str, Path]
        CSV file with a header row.

    Raises
    ------
    ValidationError
        If the file is missing, unreadable, or has no profile URL column.
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Roster file not found: {path}")

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Unreadable roster {path}: {exc}") from exc

    df.columns = [str(col).strip() for col in df.columns]
    url_col = next((col for col in URL_COLUMNS if col in df.columns), None)
    if url_col is None:
        raise ValidationError(f"Roster {path} has no profile URL column (expected one of {', '.join(URL_COLUMNS)})")
    name_col = next((col for col in NAME_COLUMNS if col in df.columns), None)

    entries: List[RosterEntry] = []
    for index, row in enumerate(df.to_dict("records")):
        line = index + 2
        name = (row.get(name_col) or "").strip() if name_col else ""
        url = (row.get(url_col) or "").strip()
        if not url:
            logger.warning("Roster line %d (%s) has no profile URL; skipped", line, name or "unnamed")
            continue
        entries.append(RosterEntry(line=line, name=name or "Unknown User", profile_url=url))

    logger.info("Roster %s: %d rows with a profile URL", path, len(entries))
    return entries

__all__ = ["RosterEntry", "read_roster", "URL_COLUMNS"]
