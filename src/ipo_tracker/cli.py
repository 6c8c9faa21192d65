from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from ipo_tracker.common.dates import now_local
from ipo_tracker.common.logging import RUN_ID_ENV, log, log_exception, setup_logger
from ipo_tracker.config import ConfigurationError, Settings, load_settings
from ipo_tracker.etl import run_fetch
from ipo_tracker.publish import update_page
from ipo_tracker.tools import post_pushplus


@contextmanager
def _env_override(key: str, value: Optional[str]) -> Iterator[None]:
    original = os.environ.get(key)
    if value is None:
        yield
        return
    os.environ[key] = value
    try:
        yield
    finally:
        if original is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original


def _ensure_run_id() -> None:
    os.environ.setdefault(RUN_ID_ENV, uuid.uuid4().hex)


def _execute_step(
    name: str, func, args: Optional[List[str]], logger: logging.Logger
) -> int:
    log(logger, logging.INFO, "cli_step_start", step=name, argv=args or [])
    try:
        code = func(args)
    except (ConfigurationError, FileNotFoundError, ValueError) as exc:
        log(logger, logging.ERROR, "cli_step_failed", step=name, error=str(exc))
        return 1
    level = logging.INFO if code == 0 else logging.ERROR
    log(logger, level, "cli_step_complete", step=name, exit_code=code)
    return code


def run_pipeline(
    settings: Settings,
    logger: logging.Logger,
    *,
    backup: bool = True,
    notify: bool = True,
) -> int:
    """Fetch, publish, then notify. Returns the process exit code.

    Failures before the page is written are fatal; notification problems
    are absorbed by the notifier.
    """

    now = now_local()
    log(logger, logging.INFO, "pipeline_start", page=str(settings.page_path))
    try:
        token = settings.require_tushare_token()
        records = run_fetch.fetch_ipo_records(token, now)
        update_page.update_page(
            settings.page_path,
            records,
            now=now,
            backup_dir=settings.backup_dir if backup else None,
        )
    except (ConfigurationError, FileNotFoundError, update_page.PageFormatError) as exc:
        log(logger, logging.ERROR, "pipeline_failed", error=str(exc), error_type=type(exc).__name__)
        return 1
    except Exception:  # noqa: BLE001 - any other failure still has to fail the run
        log_exception(logger, "pipeline_failed")
        return 1

    if notify:
        post_pushplus.send_notification(
            records,
            token=settings.pushplus_token,
            topic=settings.pushplus_topic,
            now=now,
            site_url=settings.site_url,
        )
    else:
        log(logger, logging.INFO, "pipeline_notify_disabled")

    log(logger, logging.INFO, "pipeline_complete", records=len(records))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    _ensure_run_id()

    parser = argparse.ArgumentParser(prog="ipo-tracker", description="A 股打新日历")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Fetch IPO data, update the page, and push a summary"
    )
    run_parser.add_argument("--date", help="Override today's date (YYYY-MM-DD)")
    run_parser.add_argument("--page", help="Target page (default IPO_PAGE_PATH or index.html)")
    run_parser.add_argument("--backup-dir", help="Backup snapshot directory")
    run_parser.add_argument(
        "--no-backup", action="store_true", help="Skip the dated backup snapshot"
    )
    run_parser.add_argument(
        "--no-notify", action="store_true", help="Skip the PushPlus notification"
    )

    fetch_parser = subparsers.add_parser("fetch", help="Fetch IPO data to a JSON file")
    fetch_parser.add_argument("--date", help="Override today's date (YYYY-MM-DD)")
    fetch_parser.add_argument("--out", help="Output JSON path")

    notify_parser = subparsers.add_parser("notify", help="Push a saved record file")
    notify_parser.add_argument("--date", help="Override today's date (YYYY-MM-DD)")
    notify_parser.add_argument("--records", help="Record JSON or backup snapshot")
    notify_parser.add_argument("--topic", help="PushPlus topic")

    args = parser.parse_args(argv)
    logger = setup_logger("cli", command=args.command)

    if args.command == "fetch":
        fetch_args = ["--out", args.out] if args.out else []
        with _env_override("IPO_OVERRIDE_DATE", args.date):
            return _execute_step("fetch", run_fetch.run, fetch_args, logger)

    if args.command == "notify":
        notify_args: List[str] = []
        if args.records:
            notify_args.extend(["--records", args.records])
        if args.topic:
            notify_args.extend(["--topic", args.topic])
        with _env_override("IPO_OVERRIDE_DATE", args.date):
            return _execute_step("notify", post_pushplus.run, notify_args, logger)

    # command == run
    try:
        settings = load_settings(logger)
    except ConfigurationError as exc:
        log(logger, logging.ERROR, "pipeline_failed", error=str(exc), error_type=type(exc).__name__)
        return 1
    if args.page:
        settings.page_path = Path(args.page)
    if args.backup_dir:
        settings.backup_dir = Path(args.backup_dir)

    with _env_override("IPO_OVERRIDE_DATE", args.date):
        return run_pipeline(
            settings,
            logger,
            backup=not args.no_backup,
            notify=not args.no_notify,
        )


if __name__ == "__main__":
    sys.exit(main())
