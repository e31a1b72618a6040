#!/usr/bin/env python3
"""Console progress for trim runs: per-library status and the final summary."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from trimmer.size_estimator import format_bytes


@dataclass
class LibraryStep:
    """Progress of one library within a run."""

    name: str
    status: str  # "running", "completed", "failed"
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    files: int = 0
    error_message: Optional[str] = None

    @property
    def duration(self) -> Optional[float]:
        """Calculate step duration in seconds."""
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None


class ProgressTracker:
    """Tracks which libraries were scanned and prints the run summary."""

    def __init__(
        self,
        total_libraries: int = 0,
        verbose: bool = True,
        log_file: Optional[str] = None,
        status_every: int = 500,
    ):
        """
        Initialize progress tracker.

        Args:
            total_libraries: Number of libraries in the run, when known
            verbose: Whether to print progress to console
            log_file: Optional path to append progress lines and the summary
            status_every: Emit a running status line every N files
        """
        self.total_libraries = total_libraries
        self.verbose = verbose
        self.log_file = Path(log_file) if log_file else None
        self.status_every = max(1, status_every)
        self.steps: List[LibraryStep] = []
        self._step_index: Dict[str, int] = {}
        self._run_start = time.time()

    def _emit(self, message: str) -> None:
        """Write a progress message to stdout and/or a log file."""
        if self.verbose:
            print(message)
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as handle:
                handle.write(f"{message}\n")

    def start_library(self, name: str) -> None:
        step_num = len(self.steps) + 1
        self._step_index[name] = len(self.steps)
        self.steps.append(LibraryStep(name=name, status="running", start_time=time.time()))
        total_info = f"/{self.total_libraries}" if self.total_libraries > 0 else ""
        self._emit(f"[{step_num}{total_info}] Scanning library: {name}...")

    def file_processed(self, name: str, processed_total: int) -> None:
        if name in self._step_index:
            self.steps[self._step_index[name]].files += 1
        if processed_total % self.status_every == 0:
            self._emit(f"  ... {processed_total} files processed")

    def complete_library(self, name: str) -> None:
        if name not in self._step_index:
            return
        step = self.steps[self._step_index[name]]
        step.status = "completed"
        step.end_time = time.time()
        duration = f" ({step.duration:.1f}s)" if step.duration else ""
        self._emit(f"✓ {name}: {step.files} files{duration}")

    def report_error(self, name: str, error_message: str) -> None:
        if name not in self._step_index:
            self._emit(f"✗ Error in '{name}': {error_message}")
            return
        step = self.steps[self._step_index[name]]
        step.status = "failed"
        step.end_time = time.time()
        step.error_message = error_message
        self._emit(f"✗ {name}")
        self._emit(f"  Error: {error_message}")

    def get_summary(self, summary: Mapping[str, Any], outcome: str, dry_run: bool) -> str:
        """
        Render the final summary report.

        Args:
            summary: Run counters as produced by ``RunSummary.to_dict()``
            outcome: Terminal outcome of the run
            dry_run: Whether the run only recorded intended deletions
        """
        total_duration = time.time() - self._run_start
        lines = [
            "",
            "=" * 60,
            f"VERSION TRIM SUMMARY ({'DRY RUN' if dry_run else 'DELETE'})",
            "=" * 60,
        ]
        for step in self.steps:
            status_icon = {"completed": "DONE", "failed": "FAIL", "running": "STOP"}.get(step.status, "????")
            duration_str = f"{step.duration:.1f}s" if step.duration else "---"
            lines.append(f"  {status_icon}  {step.name:<36} {step.files:>8} {duration_str:>8}")
            if step.error_message:
                lines.append(f"        └─ Error: {step.error_message}")

        lines.extend(
            [
                "-" * 60,
                f"Outcome:                  {outcome}",
                f"Files processed:          {summary.get('processed', 0)}",
                f"Files with old versions:  {summary.get('filesWithOldVersions', 0)}",
                f"Versions eligible:        {summary.get('versionsEligible', 0)}",
                f"Versions deleted:         {summary.get('versionsDeleted', 0)}",
                f"Failed/blocked deletes:   {summary.get('failedOrBlockedDeletes', 0)}",
                f"Skipped:                  {summary.get('skipped', 0)}",
            ]
        )
        if summary.get("sizeBeforeBytes") is not None:
            lines.append(f"Size before:              {format_bytes(summary.get('sizeBeforeBytes'))}")
            lines.append(f"Size after:               {format_bytes(summary.get('sizeAfterBytes'))}")
        lines.extend([f"Total duration: {total_duration:.1f}s", "=" * 60])
        return "\n".join(lines)

    def print_summary(self, summary: Mapping[str, Any], outcome: str, dry_run: bool) -> None:
        text = self.get_summary(summary, outcome, dry_run)
        if self.verbose:
            print(text)
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as handle:
                handle.write(f"{text}\n")
