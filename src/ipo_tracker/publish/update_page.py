"""Rewrite the embedded IPO data literal and update time of the static page."""
from __future__ import annotations

import json
import logging
import os
import re
import stat
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ipo_tracker.common.dates import format_timestamp
from ipo_tracker.common.logging import log, setup_logger

DATA_VARIABLE = "mockIpoData"
DECLARATION_START = re.compile(r"const\s+" + DATA_VARIABLE + r"\s*=\s*(?=\[)")
# hand-written JS literals (unquoted keys, trailing commas) are not JSON
LOOSE_LITERAL = re.compile(r"\[.*?\](?=\s*;)", re.DOTALL)
STATEMENT_END = re.compile(r"\s*;")
_DECODER = json.JSONDecoder()
UPDATED_AT_PATTERN = re.compile(r"更新时间：[^<]*</span>")
BACKUP_PREFIX = "ipo-data-"


class PageFormatError(RuntimeError):
    """Raised when the page lacks the data declaration to overwrite."""


def _data_literal(records: Sequence[Dict[str, Any]]) -> str:
    text = json.dumps(list(records), ensure_ascii=False, indent=4)
    # keep string values from closing the surrounding <script> element
    return text.replace("</", "<\\/")


def _locate_declaration(html: str) -> Tuple[int, int]:
    """Return the ``[begin, end)`` span of the data declaration statement.

    The array end is found by decoding it as JSON, so ``];`` inside string
    values does not cut the literal short.
    """

    starts = list(DECLARATION_START.finditer(html))
    if not starts:
        raise PageFormatError(f"页面中未找到 const {DATA_VARIABLE} = [...]; 数据声明")
    if len(starts) > 1:
        raise PageFormatError(f"页面中存在 {len(starts)} 处 {DATA_VARIABLE} 数据声明")

    start = starts[0]
    try:
        _, literal_end = _DECODER.raw_decode(html, start.end())
    except ValueError:
        loose = LOOSE_LITERAL.match(html, start.end())
        if loose is None:
            raise PageFormatError(f"{DATA_VARIABLE} 数据声明未以 ]; 结束") from None
        literal_end = loose.end()

    tail = STATEMENT_END.match(html, literal_end)
    if tail is None:
        raise PageFormatError(f"{DATA_VARIABLE} 数据声明未以 ]; 结束")
    return start.start(), tail.end()


def render_page(html: str, records: Sequence[Dict[str, Any]], updated_at: datetime) -> str:
    """Return *html* with the data declaration and update time replaced.

    Raises:
        PageFormatError: If the page has no ``const mockIpoData = [...]``
            declaration, or more than one.
    """

    begin, end = _locate_declaration(html)
    declaration = f"const {DATA_VARIABLE} = {_data_literal(records)};"
    updated = html[:begin] + declaration + html[end:]
    marker = f"更新时间：{format_timestamp(updated_at)} (自动更新)</span>"
    return UPDATED_AT_PATTERN.sub(lambda _: marker, updated, count=1)


def _write_atomic(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        os.chmod(tmp_name, stat.S_IMODE(path.stat().st_mode))
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_backup(
    backup_dir: Path,
    records: Sequence[Dict[str, Any]],
    now: datetime,
    logger: Optional[logging.Logger] = None,
) -> Optional[Path]:
    """Write ``ipo-data-YYYY-MM-DD.json`` once; failures are only logged.

    An existing snapshot for the same day is left untouched.
    """

    logger = logger or setup_logger("publish")
    path = Path(backup_dir) / f"{BACKUP_PREFIX}{now.strftime('%Y-%m-%d')}.json"
    if path.exists():
        log(logger, logging.INFO, "backup_exists_skip", path=str(path))
        return None

    payload = {"updateTime": now.isoformat(), "data": list(records)}
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("x", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
    except OSError as exc:
        log(logger, logging.WARNING, "backup_write_failed", path=str(path), error=str(exc))
        return None
    log(logger, logging.INFO, "backup_written", path=str(path), records=len(records))
    return path


def update_page(
    page_path: Path,
    records: List[Dict[str, Any]],
    *,
    now: datetime,
    backup_dir: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """Publish *records* into the page at *page_path*.

    The page must already exist; a missing file is a deployment error and
    raises ``FileNotFoundError``. When *backup_dir* is given a dated
    snapshot is written after the page, best effort.
    """

    logger = logger or setup_logger("publish")
    page_path = Path(page_path)
    if not page_path.is_file():
        raise FileNotFoundError(f"缺少页面文件: {page_path}")

    html = page_path.read_text(encoding="utf-8")
    if not UPDATED_AT_PATTERN.search(html):
        log(logger, logging.WARNING, "page_missing_updated_marker", path=str(page_path))
    rendered = render_page(html, records, now)
    _write_atomic(page_path, rendered)
    log(
        logger,
        logging.INFO,
        "page_update_complete",
        path=str(page_path),
        records=len(records),
        changed=rendered != html,
    )

    if backup_dir is not None:
        write_backup(Path(backup_dir), records, now, logger)
    return page_path
