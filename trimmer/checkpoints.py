"""Periodic pause points during long trims.

Every N files or M minutes the engine asks a continuation policy whether to
keep going. Unattended runs use ``AutoContinue``; operator-driven runs use
``ConsolePrompt``.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, TextIO


LOGGER = logging.getLogger("versiontrim.checkpoints")

CONTINUE = "continue"
STOP = "stop"

STOP_ANSWERS = {"n", "no", "s", "stop", "q", "quit"}


@dataclass(frozen=True)
class CheckpointProgress:
    processed: int
    files_since_checkpoint: int
    minutes_since_checkpoint: float
    library: str
    dry_run: bool


class ContinuationPolicy(Protocol):
    def decide(self, progress: CheckpointProgress) -> str: ...


class AutoContinue:
    def decide(self, progress: CheckpointProgress) -> str:
        LOGGER.info(
            "Checkpoint after %d files (%.1f min); continuing automatically",
            progress.processed,
            progress.minutes_since_checkpoint,
            extra={"library": progress.library, "processed": progress.processed},
        )
        return CONTINUE


class ConsolePrompt:
    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output: Optional[TextIO] = None,
    ) -> None:
        self._input = input_func
        self._output = output or sys.stdout

    def decide(self, progress: CheckpointProgress) -> str:
        mode = "DRY RUN" if progress.dry_run else "DELETE"
        self._output.write(
            f"\nCheckpoint [{mode}] library '{progress.library}': {progress.processed} files processed, "
            f"{progress.files_since_checkpoint} since last checkpoint "
            f"({progress.minutes_since_checkpoint:.1f} min).\n"
        )
        self._output.flush()
        try:
            answer = self._input("Continue? [Y/n]: ")
        except EOFError:
            LOGGER.warning("No console input available at checkpoint; stopping")
            return STOP
        if answer.strip().lower() in STOP_ANSWERS:
            return STOP
        return CONTINUE


class CheckpointGuard:
    """Counts files and wall time between checkpoints."""

    def __init__(
        self,
        policy: ContinuationPolicy,
        every_files: int,
        every_minutes: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy
        self.every_files = every_files
        self.every_seconds = every_minutes * 60.0
        self._clock = clock
        self._files_since = 0
        self._last_at = clock()
        self.checkpoints = 0

    def file_done(self, processed: int, library: str, dry_run: bool) -> str:
        """Count one processed file; returns the policy decision or CONTINUE."""
        self._files_since += 1
        elapsed = self._clock() - self._last_at
        if self._files_since < self.every_files and elapsed < self.every_seconds:
            return CONTINUE

        self.checkpoints += 1
        decision = self.policy.decide(
            CheckpointProgress(
                processed=processed,
                files_since_checkpoint=self._files_since,
                minutes_since_checkpoint=elapsed / 60.0,
                library=library,
                dry_run=dry_run,
            )
        )
        self._files_since = 0
        self._last_at = self._clock()
        return decision
