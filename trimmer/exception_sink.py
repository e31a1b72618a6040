from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union


LOGGER = logging.getLogger("versiontrim.exceptions")

HEADER = ["Timestamp", "Site", "Library", "FileRef", "ItemId", "Action", "Result", "Message"]

ACTION_LOAD = "Load"
ACTION_DELETE = "Delete"
ACTION_SKIP = "Skip"

RESULT_FAILED = "Failed"
RESULT_BLOCKED = "Blocked"
RESULT_SKIPPED = "Skipped"


@dataclass(frozen=True)
class ExceptionRecord:
    timestamp: str
    site: str
    library: str
    file_ref: str
    item_id: str
    action: str
    result: str
    message: str

    def as_row(self) -> List[str]:
        return [
            self.timestamp,
            self.site,
            self.library,
            self.file_ref,
            self.item_id,
            self.action,
            self.result,
            self.message,
        ]


class ExceptionSink:
    """Append-only CSV of items that were skipped, blocked or failed.

    Successful deletions are not written; the file grows with the number of
    exceptions, not with the amount of work done.
    """

    def __init__(
        self,
        path: Union[str, Path],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.path = Path(path)
        self._clock = clock
        self.count = 0

    def record(
        self,
        site: str,
        library: str,
        file_ref: str,
        item_id: Optional[object],
        action: str,
        result: str,
        message: str,
    ) -> ExceptionRecord:
        record = ExceptionRecord(
            timestamp=self._clock().isoformat(),
            site=site,
            library=library,
            file_ref=file_ref,
            item_id="" if item_id is None else str(item_id),
            action=action,
            result=result,
            message=" ".join(str(message).split()),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not self.path.exists() or self.path.stat().st_size == 0
        with self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            if write_header:
                writer.writerow(HEADER)
            writer.writerow(record.as_row())
        self.count += 1

        if result != RESULT_SKIPPED:
            LOGGER.warning(
                "%s %s for %s: %s",
                action,
                result.lower(),
                file_ref or library,
                record.message,
                extra={"site": site, "library": library, "file_ref": file_ref, "action": action, "result": result},
            )
        return record


def read_records(path: Union[str, Path]) -> List[ExceptionRecord]:
    """Load every row of an exception log written by ``ExceptionSink``."""
    records: List[ExceptionRecord] = []
    source = Path(path)
    if not source.exists():
        return records
    with source.open("r", newline="", encoding="utf-8") as handle:
        for row in csv.DictReader(handle):
            records.append(
                ExceptionRecord(
                    timestamp=row["Timestamp"],
                    site=row["Site"],
                    library=row["Library"],
                    file_ref=row["FileRef"],
                    item_id=row["ItemId"],
                    action=row["Action"],
                    result=row["Result"],
                    message=row["Message"],
                )
            )
    return records
