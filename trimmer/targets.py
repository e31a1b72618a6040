from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from connector.runtime_config import TrimConfigError
from connector.session import Library


LOGGER = logging.getLogger("versiontrim.targets")

LIBRARY_COLUMNS = ("Title", "Library", "Name")
TOKEN_COLUMNS = ("Token", "SkipToken", "Name")


class NoTargetsError(TrimConfigError):
    """Target selection was ambiguous or matched no libraries."""


def _read_column(path: Path, preferred: Sequence[str]) -> List[str]:
    """Read one column from a CSV, using a known header or the first column."""
    with Path(path).open("r", newline="", encoding="utf-8-sig") as handle:
        rows = [row for row in csv.reader(handle) if row and any(cell.strip() for cell in row)]
    if not rows:
        return []
    header = [cell.strip() for cell in rows[0]]
    lowered = [cell.lower() for cell in header]
    for name in preferred:
        if name.lower() in lowered:
            index = lowered.index(name.lower())
            return [row[index].strip() for row in rows[1:] if len(row) > index and row[index].strip()]
    return [row[0].strip() for row in rows if row[0].strip()]


def read_library_names(path: Path) -> List[str]:
    return _read_column(path, LIBRARY_COLUMNS)


def read_skip_tokens(path: Optional[Path]) -> List[str]:
    if path is None:
        return []
    return [token.lower() for token in _read_column(path, TOKEN_COLUMNS)]


def _dedupe(names: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


def resolve_targets(
    libraries: Sequence[Library],
    names: Sequence[str] = (),
    csv_path: Optional[Path] = None,
    all_libraries: bool = False,
) -> List[Library]:
    """Pick the libraries to trim.

    Explicit and CSV names are merged and matched case-sensitively on title.
    ``all_libraries`` selects every visible document library instead.
    """
    requested = list(names)
    if csv_path is not None:
        requested.extend(read_library_names(csv_path))
    requested = _dedupe(name.strip() for name in requested if name.strip())

    if all_libraries and requested:
        raise NoTargetsError("Choose either explicit libraries or all libraries, not both.")
    if not all_libraries and not requested:
        raise NoTargetsError("No libraries selected; pass library names, a CSV, or the all-libraries flag.")

    if all_libraries:
        resolved = [lib for lib in libraries if lib.is_document_library and not lib.hidden]
    else:
        by_title = {lib.title: lib for lib in libraries}
        resolved = []
        for name in requested:
            library = by_title.get(name)
            if library is None:
                LOGGER.warning("Library '%s' was not found on the site; skipping it", name)
                continue
            resolved.append(library)

    if not resolved:
        raise NoTargetsError("Target selection matched no document libraries.")
    return resolved


def matching_skip_token(leaf_name: str, tokens: Sequence[str]) -> Optional[str]:
    lowered = leaf_name.lower()
    for token in tokens:
        if token and token in lowered:
            return token
    return None
