#!/usr/bin/env python3
"""Command-line entry point for trimming old file versions on one site."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

# Add parent directory to path to allow imports without PYTHONPATH
sys.path.insert(0, str(Path(__file__).parent.parent))

from connector.logging_config import configure_logging
from connector.runtime_config import (
    DEFAULT_BATCH_PAUSE_SECONDS,
    DEFAULT_MAX_FILES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_OLDER_THAN_DAYS,
    DEFAULT_PAUSE_EVERY_FILES,
    DEFAULT_PAUSE_EVERY_MINUTES,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_VERSION_BATCH_SIZE,
    TrimConfigError,
    TrimOptions,
    build_options,
    env_flag,
    env_float,
    env_int,
)


LOGGER = logging.getLogger("versiontrim.cli")

EXIT_CONFIG_ERROR = 2


def _optional_path(name: str) -> Optional[Path]:
    raw = os.getenv(name, "").strip()
    return Path(raw) if raw else None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Delete file versions older than a cutoff from SharePoint document libraries."
    )
    parser.add_argument("--site-url", default=os.getenv("VTRIM_SITE_URL"), help="Site to trim.")
    parser.add_argument(
        "--older-than-days",
        type=int,
        default=env_int("VTRIM_OLDER_THAN_DAYS", DEFAULT_OLDER_THAN_DAYS),
        help="Only versions created more than this many days ago are removed (minimum 5).",
    )
    parser.add_argument(
        "--library",
        dest="libraries",
        action="append",
        default=[],
        help="Library title to trim. Repeat for several libraries.",
    )
    parser.add_argument("--libraries-csv", type=Path, default=_optional_path("VTRIM_LIBRARIES_CSV"))
    parser.add_argument(
        "--all-libraries",
        action="store_true",
        default=env_flag("VTRIM_ALL_LIBRARIES"),
        help="Trim every visible document library on the site.",
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Actually delete versions. The first run for a site is always a dry run.",
    )
    parser.add_argument("--max-files", type=int, default=env_int("VTRIM_MAX_FILES", DEFAULT_MAX_FILES))
    parser.add_argument(
        "--pause-every-files",
        type=int,
        default=env_int("VTRIM_PAUSE_EVERY_FILES", DEFAULT_PAUSE_EVERY_FILES),
    )
    parser.add_argument(
        "--pause-every-minutes",
        type=int,
        default=env_int("VTRIM_PAUSE_EVERY_MINUTES", DEFAULT_PAUSE_EVERY_MINUTES),
    )
    parser.add_argument(
        "--auto-continue",
        action="store_true",
        default=env_flag("VTRIM_AUTO_CONTINUE"),
        help="Log checkpoints and keep going instead of prompting.",
    )
    parser.add_argument(
        "--version-batch-size",
        type=int,
        default=env_int("VTRIM_VERSION_BATCH_SIZE", DEFAULT_VERSION_BATCH_SIZE),
    )
    parser.add_argument(
        "--batch-pause-seconds",
        type=float,
        default=env_float("VTRIM_BATCH_PAUSE_SECONDS", DEFAULT_BATCH_PAUSE_SECONDS),
        help="Seconds to wait between delete chunks of one file.",
    )
    parser.add_argument("--max-retries", type=int, default=env_int("VTRIM_MAX_RETRIES", DEFAULT_MAX_RETRIES))
    parser.add_argument(
        "--request-timeout",
        type=int,
        default=env_int("VTRIM_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        help="Seconds before a single remote call times out.",
    )
    parser.add_argument(
        "--measure-size",
        action="store_true",
        help="Measure library size before and after the run (reads every item twice; slow).",
    )
    parser.add_argument("--exception-log", type=Path, default=_optional_path("VTRIM_EXCEPTION_LOG"))
    parser.add_argument("--log-file", type=Path, default=_optional_path("VTRIM_LOG_FILE"))
    parser.add_argument("--skip-tokens-csv", type=Path, default=_optional_path("VTRIM_SKIP_TOKENS_CSV"))
    parser.add_argument("--state-dir", type=Path, default=_optional_path("VTRIM_STATE_DIR"))
    parser.add_argument(
        "--summary-json",
        type=Path,
        default=None,
        help="Optional file to write the final summary as JSON.",
    )
    parser.add_argument(
        "--apply-version-limit",
        type=int,
        default=None,
        help="Set the site's major version limit, start the policy cooldown, and exit.",
    )
    parser.add_argument("--apply-expire-after-days", type=int, default=None)
    parser.add_argument("--quiet", action="store_true", help="Disable console progress output.")
    return parser


def options_from_args(args: argparse.Namespace) -> TrimOptions:
    return build_options(
        older_than_days=args.older_than_days,
        libraries=args.libraries,
        libraries_csv=args.libraries_csv,
        all_libraries=args.all_libraries,
        delete=args.delete,
        max_files=args.max_files,
        pause_every_files=args.pause_every_files,
        pause_every_minutes=args.pause_every_minutes,
        auto_continue=args.auto_continue,
        version_batch_size=args.version_batch_size,
        batch_pause_seconds=args.batch_pause_seconds,
        max_retries=args.max_retries,
        request_timeout=args.request_timeout,
        measure_size=args.measure_size,
        exception_log=args.exception_log,
        text_log=args.log_file,
        skip_tokens_csv=args.skip_tokens_csv,
        state_dir=args.state_dir,
    )


def _open_session(site_url: Optional[str], timeout: int):
    from connector.sharepoint import SharePointSession

    if not site_url:
        raise TrimConfigError("--site-url (or VTRIM_SITE_URL) is required.")
    token = os.getenv("VTRIM_ACCESS_TOKEN", "").strip()
    if not token:
        raise TrimConfigError("VTRIM_ACCESS_TOKEN must hold an access token for the site.")
    return SharePointSession(site_url, token, timeout=timeout)


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
        handle.write("\n")


def main(argv: Optional[Sequence[str]] = None, session=None) -> int:
    from trimmer.policy_gate import apply_version_policy
    from trimmer.progress_tracker import ProgressTracker
    from trimmer.run_state import RunStateError, RunStateStore
    from trimmer.trim_engine import EXIT_REMOTE_FAILURE, REMOTE_ERRORS, TrimEngine

    try:
        args = _build_parser().parse_args(argv)
    except TrimConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    configure_logging(text_log_path=args.log_file)
    owns_session = session is None

    try:
        if args.apply_version_limit is not None:
            if session is None:
                session = _open_session(args.site_url, args.request_timeout)
            store = RunStateStore(args.state_dir or TrimOptions.state_dir)
            apply_version_policy(session, store, args.apply_version_limit, args.apply_expire_after_days)
            if not args.quiet:
                print("Version policy applied; trimming is paused for 30 minutes while it propagates.")
            return 0

        options = options_from_args(args)
        if session is None:
            session = _open_session(args.site_url, options.request_timeout)
        tracker = ProgressTracker(
            verbose=not args.quiet,
            log_file=str(options.text_log) if options.text_log else None,
        )
        result = TrimEngine(session, options, progress=tracker).run()
    except (TrimConfigError, RunStateError, ValueError) as exc:
        LOGGER.error("%s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except REMOTE_ERRORS as exc:
        LOGGER.error("%s", exc)
        print(f"Remote error: {exc}", file=sys.stderr)
        return EXIT_REMOTE_FAILURE
    finally:
        if owns_session and session is not None:
            session.close()

    if args.summary_json:
        _write_json(args.summary_json, result.to_dict())
    if result.exit_code == EXIT_REMOTE_FAILURE:
        print(result.message, file=sys.stderr)
    elif result.message and not args.quiet:
        print(result.message)
    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
