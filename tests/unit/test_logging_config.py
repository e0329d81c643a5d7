import json
import logging
import pytest

from core.logging_config import ConsoleFormatter, JsonFormatter, log_context, setup_logging


def make_record(message: str = "Applied migration v1") -> logging.LogRecord:
    logger = logging.getLogger("services.schema_synthesizer")
    return logger.makeRecord(logger.name, logging.INFO, __file__, 10, message, (), None, func="apply")


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestLogging:

    def test_json_lines_carry_template_context(self):
        with log_context(template="client", template_id="abc"):
            inside = make_record()
        outside = make_record()

        entry = json.loads(JsonFormatter().format(inside))

        assert entry["message"] == "Applied migration v1"
        assert entry["level"] == "INFO"
        assert (entry["template"], entry["template_id"]) == ("client", "abc")
        assert "template" not in json.loads(JsonFormatter().format(outside))

    def test_context_is_removed_after_an_error(self):
        with pytest.raises(RuntimeError):
            with log_context(template="client"):
                raise RuntimeError("migration failed")

        assert not hasattr(make_record(), "template")

    def test_console_formatter_leaves_record_untouched(self):
        record = make_record()

        line = ConsoleFormatter(fmt="%(levelname)s %(message)s").format(record)

        assert line == "\033[32mINFO\033[0m Applied migration v1"
        assert record.levelname == "INFO"

    def test_setup_logging_installs_one_handler(self, restore_root_logger):
        setup_logging(log_level="warning", json_logs=True)
        setup_logging(log_level="warning", json_logs=True)

        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)
        assert restore_root_logger.level == logging.WARNING
