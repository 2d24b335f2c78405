import json
import logging
import sys

from etherview.logging_utils import JsonFormatter, setup_stdout_logging, warn_once_per


def test_warn_once_per_throttles_by_key(caplog):
    log = logging.getLogger("etherview.test")
    with caplog.at_level(logging.WARNING, logger="etherview.test"):
        assert warn_once_per(60.0, "k1", "first %s", "a", logger=log) is True
        assert warn_once_per(60.0, "k1", "second", logger=log) is False
        assert warn_once_per(60.0, "k2", "other key", logger=log) is True
        assert warn_once_per(0, "k1", "no interval", logger=log) is True

    messages = [r.getMessage() for r in caplog.records]
    assert messages == ["first a", "other key", "no interval"]


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("etherview.x", logging.INFO, __file__, 12, "hello %s", ("world",), None)
    record.wallet = "0xabc"
    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "hello world"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "etherview.x"
    assert payload["line"] == 12
    assert payload["wallet"] == "0xabc"
    assert payload["ts"].endswith("Z")


def test_setup_stdout_logging_installs_single_handler(monkeypatch):
    monkeypatch.delenv("ETHERVIEW_LOG_LEVEL", raising=False)
    root = logging.getLogger()
    original_level = root.level
    try:
        first = setup_stdout_logging(json_output=True)
        second = setup_stdout_logging(level=logging.DEBUG, json_output=False)

        assert first is second
        assert [h for h in root.handlers if h is first] == [first]
        assert first.stream is sys.stdout
        assert first.level == logging.DEBUG
        assert not isinstance(first.formatter, JsonFormatter)
        assert logging.getLogger("asyncio").propagate is False
    finally:
        handler = getattr(root, "_etherview_stdout_handler", None)
        if handler is not None:
            root.removeHandler(handler)
            delattr(root, "_etherview_stdout_handler")
        logging.getLogger("asyncio").propagate = True
        logging.getLogger("aiohttp.access").propagate = True
        root.setLevel(original_level)
