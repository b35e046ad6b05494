import json
import logging

import pytest

from blead2mqtt.logging import LOG_FILE_NAME, JsonFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(message: str, *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord("blead2mqtt.main", logging.INFO, __file__, 1, message, args, None)
    record.__dict__.update(extra)
    return record


def test_json_formatter_includes_context_fields():
    line = JsonFormatter().format(_record("Scan finished, %d messages published", 3, published=3))
    payload = json.loads(line)
    assert payload["level"] == "INFO"
    assert payload["logger"] == "blead2mqtt.main"
    assert payload["message"] == "Scan finished, 3 messages published"
    assert payload["published"] == 3
    assert "address" not in payload


def test_json_formatter_plain_record():
    payload = json.loads(JsonFormatter().format(_record("BLE adapter ready")))
    assert set(payload) == {"level", "message", "logger", "time"}


def test_setup_logging_writes_json_file(tmp_path, restore_root_logger):
    setup_logging(level="debug", log_dir=str(tmp_path / "logs"), json_output=True)

    logging.getLogger("blead2mqtt.transform").debug(
        "Suppressed advertisement from %s", "aa:bb", extra={"address": "aa:bb"}
    )
    for handler in restore_root_logger.handlers:
        handler.flush()

    lines = (tmp_path / "logs" / LOG_FILE_NAME).read_text().splitlines()
    assert json.loads(lines[-1])["address"] == "aa:bb"
    assert logging.getLogger("bleak").level == logging.INFO
