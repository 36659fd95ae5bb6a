import json

import pytest

from hitcounter.logger import new_logger


def _close(logger):
    for handler in logger.handlers:
        handler.close()


def test_stdout_logger(capsys):
    logger = new_logger("", "")
    logger.info("hello world")
    _close(logger)
    entry = json.loads(capsys.readouterr().out.strip())
    assert entry["level"] == "INFO"
    assert entry["message"] == "hello world"
    assert "time" in entry


def test_file_logger_appends(tmp_path):
    logger = new_logger(str(tmp_path), "test.log")
    logger.info("first")
    logger.error("second")
    _close(logger)

    logger = new_logger(str(tmp_path), "test.log")
    logger.warning("third")
    _close(logger)

    lines = (tmp_path / "test.log").read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert [e["message"] for e in entries] == ["first", "second", "third"]
    assert [e["level"] for e in entries] == ["INFO", "ERROR", "WARN"]


def test_mapping_message_is_merged(tmp_path):
    logger = new_logger(str(tmp_path), "map.log")
    logger.error({"status": 500, "uri": "/x"})
    _close(logger)
    entry = json.loads((tmp_path / "map.log").read_text(encoding="utf-8"))
    assert entry["status"] == 500
    assert entry["uri"] == "/x"
    assert entry["level"] == "ERROR"
    assert "message" not in entry


def test_debug_is_filtered(tmp_path):
    logger = new_logger(str(tmp_path), "level.log")
    logger.debug("hidden")
    logger.info("shown")
    _close(logger)
    lines = (tmp_path / "level.log").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["message"] for line in lines] == ["shown"]


def test_missing_directory_raises(tmp_path):
    with pytest.raises(OSError):
        new_logger(str(tmp_path / "empty-folder"), "test.log")