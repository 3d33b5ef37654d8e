from __future__ import annotations

import json
import logging

from ems_protocols.utils.logger import (
    CorrelationIdFilter,
    DevFormatter,
    JsonFormatter,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("ems_protocols.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_correlation_id_and_context() -> None:
    set_correlation_id("trace-42")
    try:
        record = _record("Protocol corpus loaded.", context={"protocols": 11})
        CorrelationIdFilter().filter(record)
        document = json.loads(JsonFormatter("EMS Protocol Lookup", "prod").format(record))
    finally:
        clear_correlation_id()

    assert document["msg"] == "Protocol corpus loaded."
    assert document["correlation_id"] == "trace-42"
    assert document["context"] == {"protocols": 11}
    assert document["env"] == "prod"
    assert get_correlation_id() is None


def test_dev_formatter_renders_context_pairs() -> None:
    record = _record("Quiz generated.", context={"questions": 3, "fallbacks": 1})
    CorrelationIdFilter().filter(record)

    line = DevFormatter().format(record)

    assert "Quiz generated." in line
    assert "questions=3 fallbacks=1" in line
    assert "[-]" in line
