import logging

from budget_reconciler.logger import ReconcilerConsoleFormatter, get_logging_config


def test_component_levels_and_rotating_file(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setenv("LOG_LEVEL_MATCHING", "DEBUG")
    monkeypatch.setenv("LOG_LEVEL_BULK", "nonsense")
    monkeypatch.delenv("LOG_LEVEL_DETECTION", raising=False)
    monkeypatch.setenv("LOG_DIR", str(tmp_path))

    config = get_logging_config()

    loggers = config["loggers"]
    assert loggers[""]["level"] == "WARNING"
    assert loggers[""]["handlers"] == ["console", "file"]
    assert loggers["budget_reconciler.matching"] == {"level": "DEBUG"}
    assert loggers["budget_reconciler.services.bulk"] == {"level": "WARNING"}
    assert "budget_reconciler.detection" not in loggers
    assert config["handlers"]["file"]["class"] == "logging.handlers.RotatingFileHandler"
    assert config["handlers"]["file"]["filename"] == str(tmp_path / "reconciler.log")


def test_console_only_without_log_dir(monkeypatch):
    monkeypatch.delenv("LOG_DIR", raising=False)
    config = get_logging_config()
    assert list(config["handlers"]) == ["console"]


def test_console_formatter_colours_tag_without_touching_record():
    formatter = ReconcilerConsoleFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("budget_reconciler", logging.INFO, __file__, 1, "[BULK] %s items", (3,), None)

    output = formatter.format(record)

    assert output == "\x1b[32mINFO\x1b[0m \x1b[36m[BULK]\x1b[0m 3 items"
    assert record.levelname == "INFO"
    assert record.message == "[BULK] 3 items"
