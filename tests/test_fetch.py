import json
import logging
from datetime import datetime

import pytest
import requests

from conftest import RESOLVED_ITEM, UNDATED_ITEM, DummyResponse, RecordingSession, tushare_payload
from ipo_tracker.common.dates import CHINA_TZ, PENDING
from ipo_tracker.config import ConfigurationError, Settings
from ipo_tracker.etl import run_fetch

NOW = datetime(2024, 1, 10, 9, 30, tzinfo=CHINA_TZ)


def test_build_request_covers_thirty_days() -> None:
    body = run_fetch.build_request("secret", NOW)
    assert body["api_name"] == "new_share"
    assert body["token"] == "secret"
    assert body["params"] == {"start_date": "20240110", "end_date": "20240209"}
    assert body["fields"].split(",")[0] == "ts_code"


def test_positional_items_are_zipped_and_undated_dropped() -> None:
    session = RecordingSession(responses=[DummyResponse(tushare_payload([RESOLVED_ITEM, UNDATED_ITEM]))])

    records = run_fetch.fetch_ipo_records("secret", NOW, session=session)

    assert len(session.calls) == 1
    assert session.calls[0]["url"] == run_fetch.TUSHARE_URL
    assert session.calls[0]["timeout"] == run_fetch.REQUEST_TIMEOUT
    assert records == [
        {
            "name": "芯片科技",
            "code": "688981",
            "date": "2024-01-15",
            "market": "科创板",
            "price": 18.5,
            "maxSubscription": 15000,
            "requiredMarketValue": {"shanghai": 15, "shenzhen": 30},
            "industry": PENDING,
            "peRatio": 32.1,
            "expectedFundraise": "12.5亿",
            "listingDate": "2024-01-25",
        }
    ]
    assert list(records[0]) == [
        "name",
        "code",
        "date",
        "market",
        "price",
        "maxSubscription",
        "requiredMarketValue",
        "industry",
        "peRatio",
        "expectedFundraise",
        "listingDate",
    ]
    # injected sessions are left open for the caller
    assert session.closed is False


def test_mapping_items_and_missing_fields_use_sentinels() -> None:
    payload = {
        "code": 0,
        "data": {
            "items": [
                {"ipo_date": "20240112"},
                {"ts_code": "920118.BJ", "name": "北交新股", "ipo_date": "20240118", "funds": 3},
            ]
        },
    }

    records = run_fetch.transform_payload(payload)

    first, second = records
    assert first["name"] == "未知"
    assert first["code"] == "未知"
    assert first["market"] == "未知"
    assert first["price"] is None
    assert first["maxSubscription"] == 0
    assert first["requiredMarketValue"] == {"shanghai": 10, "shenzhen": 20}
    assert first["peRatio"] == PENDING
    assert first["expectedFundraise"] == PENDING
    assert first["listingDate"] == PENDING
    assert second["market"] == "北交所"
    assert second["expectedFundraise"] == "3亿"


def test_unknown_code_falls_back_to_provider_market() -> None:
    record = run_fetch.transform_item({"ts_code": "AB12", "market": "主板", "ipo_date": "20240101"})
    assert record.market == "主板"


def test_limit_amount_rounds_instead_of_truncating() -> None:
    record = run_fetch.transform_item({"ipo_date": "20240101", "limit_amount": 1.15})
    assert record.maxSubscription == 11500


def test_short_positional_rows_leave_fields_absent() -> None:
    rows = run_fetch.zip_items(["ts_code", "name", "ipo_date"], [["600001.SH", "短行"], "junk"])
    assert rows == [{"ts_code": "600001.SH", "name": "短行"}]


@pytest.mark.parametrize(
    "response",
    [
        requests.ConnectionError("boom"),
        requests.Timeout("slow"),
        DummyResponse({"code": 0}, status_code=502),
        DummyResponse(None, text="<html>gateway</html>"),
        DummyResponse({"code": 40101, "msg": "抱歉，您没有访问该接口的权限", "data": None}),
        DummyResponse({"code": 0, "data": {"items": "oops", "fields": []}}),
        DummyResponse(["not", "a", "mapping"]),
    ],
)
def test_provider_failures_degrade_to_empty(response) -> None:
    session = RecordingSession(responses=[response])

    assert run_fetch.fetch_ipo_records("secret", NOW, session=session) == []
    assert len(session.calls) == 1


@pytest.mark.parametrize("huge", ["1e999", float("inf"), "-Infinity", float("nan")])
def test_non_finite_numbers_map_to_sentinels(huge) -> None:
    row = list(RESOLVED_ITEM)
    row[6] = huge  # price
    row[7] = huge  # pe
    row[8] = huge  # limit_amount
    row[9] = huge  # funds
    session = RecordingSession(responses=[DummyResponse(tushare_payload([row]))])

    records = run_fetch.fetch_ipo_records("secret", NOW, session=session)

    assert len(records) == 1
    record = records[0]
    assert record["price"] is None
    assert record["peRatio"] == PENDING
    assert record["expectedFundraise"] == PENDING
    assert record["maxSubscription"] == 0
    assert record["requiredMarketValue"] == {"shanghai": 10, "shenzhen": 20}


def test_row_that_fails_to_convert_degrades_to_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    def explode(row):
        raise OverflowError("cannot convert float infinity to integer")

    monkeypatch.setattr(run_fetch, "transform_item", explode)
    session = RecordingSession(responses=[DummyResponse(tushare_payload([RESOLVED_ITEM]))])

    assert run_fetch.fetch_ipo_records("secret", NOW, session=session) == []


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_fetch_logs_name_the_source() -> None:
    logger = logging.getLogger("ipo_tracker.test_fetch_source")
    logger.setLevel(logging.INFO)
    handler = _ListHandler()
    logger.addHandler(handler)
    session = RecordingSession(
        responses=[requests.ConnectionError("boom"), DummyResponse(tushare_payload([RESOLVED_ITEM]))]
    )
    try:
        run_fetch.fetch_ipo_records("secret", NOW, session=session, logger=logger)
        run_fetch.fetch_ipo_records("secret", NOW, session=session, logger=logger)
    finally:
        logger.removeHandler(handler)

    by_event = {record.getMessage(): record.ipo_extra for record in handler.records}
    assert by_event["ipo_fetch_failed"]["source"] == "tushare_new_share"
    assert "boom" in by_event["ipo_fetch_failed"]["detail"]
    assert by_event["ipo_fetch_complete"]["source"] == "tushare_new_share"
    assert by_event["ipo_fetch_complete"]["records"] == 1


def test_empty_data_yields_no_records() -> None:
    session = RecordingSession(responses=[DummyResponse({"code": 0, "data": None})])
    assert run_fetch.fetch_ipo_records("secret", NOW, session=session) == []


def test_own_session_is_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    session = RecordingSession(responses=[DummyResponse(tushare_payload([RESOLVED_ITEM]))])
    monkeypatch.setattr(run_fetch.requests, "Session", lambda: session)

    records = run_fetch.fetch_ipo_records("secret", NOW)

    assert len(records) == 1
    assert session.closed is True


def test_missing_token_is_fatal() -> None:
    with pytest.raises(ConfigurationError):
        Settings().require_tushare_token()


def test_run_writes_records_file(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    session = RecordingSession(responses=[DummyResponse(tushare_payload([RESOLVED_ITEM, UNDATED_ITEM]))])
    monkeypatch.setattr(run_fetch.requests, "Session", lambda: session)
    monkeypatch.setenv("TUSHARE_TOKEN", "secret")
    monkeypatch.setenv("IPO_OVERRIDE_DATE", "2024-01-10")
    out_path = tmp_path / "out" / "records.json"

    exit_code = run_fetch.run(["--out", str(out_path)])

    assert exit_code == 0
    assert session.calls[0]["json"]["params"]["start_date"] == "20240110"
    saved = json.loads(out_path.read_text(encoding="utf-8"))
    assert [item["code"] for item in saved] == ["688981"]
