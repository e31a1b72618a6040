from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple


TRUE_VALUES = {"1", "true", "yes", "on"}

MIN_OLDER_THAN_DAYS = 5
DEFAULT_OLDER_THAN_DAYS = 90
DEFAULT_MAX_FILES = 200_000
DEFAULT_PAUSE_EVERY_FILES = 5000
DEFAULT_PAUSE_EVERY_MINUTES = 10
DEFAULT_VERSION_BATCH_SIZE = 50
DEFAULT_BATCH_PAUSE_SECONDS = 1.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_REQUEST_TIMEOUT = 180
PAGE_SIZE = 2000

# name -> (minimum, maximum)
BOUNDS = {
    "older_than_days": (MIN_OLDER_THAN_DAYS, 36500),
    "max_files": (1, 10_000_000),
    "pause_every_files": (1, 1_000_000),
    "pause_every_minutes": (1, 1440),
    "version_batch_size": (1, 500),
    "batch_pause_seconds": (0, 300),
    "max_retries": (1, 10),
    "request_timeout": (10, 3600),
}


class TrimConfigError(RuntimeError):
    """Invalid options; raised before any remote call."""


@dataclass(frozen=True)
class TrimOptions:
    older_than_days: int = DEFAULT_OLDER_THAN_DAYS
    libraries: Tuple[str, ...] = ()
    libraries_csv: Optional[Path] = None
    all_libraries: bool = False
    delete: bool = False
    max_files: int = DEFAULT_MAX_FILES
    pause_every_files: int = DEFAULT_PAUSE_EVERY_FILES
    pause_every_minutes: int = DEFAULT_PAUSE_EVERY_MINUTES
    auto_continue: bool = False
    version_batch_size: int = DEFAULT_VERSION_BATCH_SIZE
    batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    measure_size: bool = False
    exception_log: Path = Path("logs/trim-exceptions.csv")
    text_log: Optional[Path] = None
    skip_tokens_csv: Optional[Path] = None
    state_dir: Path = Path(".trim-state")
    page_size: int = field(default=PAGE_SIZE)


def env_flag(name: str, env: Mapping[str, str] | None = None) -> bool:
    active_env = env if env is not None else os.environ
    return active_env.get(name, "").strip().lower() in TRUE_VALUES


def env_int(name: str, default: int, env: Mapping[str, str] | None = None) -> int:
    active_env = env if env is not None else os.environ
    raw_value = active_env.get(name, "").strip()
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise TrimConfigError(f"{name} must be an integer.") from exc


def env_float(name: str, default: float, env: Mapping[str, str] | None = None) -> float:
    active_env = env if env is not None else os.environ
    raw_value = active_env.get(name, "").strip()
    if not raw_value:
        return default
    try:
        return float(raw_value)
    except ValueError as exc:
        raise TrimConfigError(f"{name} must be a number.") from exc


def _check_range(errors: List[str], name: str, value: float) -> None:
    minimum, maximum = BOUNDS[name]
    if value < minimum or value > maximum:
        errors.append(f"{name} must be between {minimum} and {maximum} (got {value}).")


def build_options(
    *,
    older_than_days: int = DEFAULT_OLDER_THAN_DAYS,
    libraries: Sequence[str] = (),
    libraries_csv: Optional[Path] = None,
    all_libraries: bool = False,
    delete: bool = False,
    max_files: int = DEFAULT_MAX_FILES,
    pause_every_files: int = DEFAULT_PAUSE_EVERY_FILES,
    pause_every_minutes: int = DEFAULT_PAUSE_EVERY_MINUTES,
    auto_continue: bool = False,
    version_batch_size: int = DEFAULT_VERSION_BATCH_SIZE,
    batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT,
    measure_size: bool = False,
    exception_log: Optional[Path] = None,
    text_log: Optional[Path] = None,
    skip_tokens_csv: Optional[Path] = None,
    state_dir: Optional[Path] = None,
) -> TrimOptions:
    """Validate raw option values and return an immutable ``TrimOptions``.

    Every problem is collected so the operator sees all of them at once.
    Out-of-range values are rejected; the only value that is reset rather
    than rejected is a zero or negative ``version_batch_size``.
    """
    errors: List[str] = []

    if version_batch_size <= 0:
        version_batch_size = DEFAULT_VERSION_BATCH_SIZE

    if older_than_days < MIN_OLDER_THAN_DAYS:
        errors.append(
            f"older_than_days must be at least {MIN_OLDER_THAN_DAYS} to avoid trimming recent versions."
        )
    else:
        _check_range(errors, "older_than_days", older_than_days)

    for name, value in (
        ("max_files", max_files),
        ("pause_every_files", pause_every_files),
        ("pause_every_minutes", pause_every_minutes),
        ("version_batch_size", version_batch_size),
        ("batch_pause_seconds", batch_pause_seconds),
        ("max_retries", max_retries),
        ("request_timeout", request_timeout),
    ):
        _check_range(errors, name, value)

    names = tuple(name.strip() for name in libraries if name and name.strip())
    explicit = bool(names) or libraries_csv is not None
    if not explicit and not all_libraries:
        errors.append("Select libraries with --library/--libraries-csv or pass --all-libraries.")
    if explicit and all_libraries:
        errors.append("--all-libraries cannot be combined with an explicit library selection.")

    for label, path in (("libraries_csv", libraries_csv), ("skip_tokens_csv", skip_tokens_csv)):
        if path is not None and not Path(path).is_file():
            errors.append(f"{label} not found: {path}")

    if errors:
        error_lines = "\n- ".join(errors)
        raise TrimConfigError(f"Invalid trim options:\n- {error_lines}")

    return TrimOptions(
        older_than_days=older_than_days,
        libraries=names,
        libraries_csv=Path(libraries_csv) if libraries_csv else None,
        all_libraries=all_libraries,
        delete=delete,
        max_files=max_files,
        pause_every_files=pause_every_files,
        pause_every_minutes=pause_every_minutes,
        auto_continue=auto_continue,
        version_batch_size=version_batch_size,
        batch_pause_seconds=batch_pause_seconds,
        max_retries=max_retries,
        request_timeout=request_timeout,
        measure_size=measure_size,
        exception_log=Path(exception_log) if exception_log else TrimOptions.exception_log,
        text_log=Path(text_log) if text_log else None,
        skip_tokens_csv=Path(skip_tokens_csv) if skip_tokens_csv else None,
        state_dir=Path(state_dir) if state_dir else TrimOptions.state_dir,
    )
