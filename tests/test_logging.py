import io
import json
import logging

from loguru import logger
from opentelemetry.sdk.trace import TracerProvider

from perkmatch_api.core.logging import configure_logging


def _configure(stream: io.StringIO) -> None:
    configure_logging(service_name="perkmatch-api", environment="development", version="test", stream=stream)


def _lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_loguru_records_are_json_with_metadata_and_fields():
    stream = io.StringIO()
    _configure(stream)
    try:
        logger.info("Transaction matched", transaction_id="t-1", score=100)
    finally:
        configure_logging(service_name="perkmatch-api", environment="development", version="test")

    [entry] = _lines(stream)
    assert entry["message"] == "Transaction matched"
    assert entry["level"] == "info"
    assert entry["service"] == "perkmatch-api"
    assert entry["version"] == "test"
    assert entry["transaction_id"] == "t-1"
    assert entry["score"] == 100
    assert "trace_id" not in entry


def test_active_span_ids_are_attached():
    stream = io.StringIO()
    _configure(stream)
    tracer = TracerProvider().get_tracer("tests")
    try:
        with tracer.start_as_current_span("matching") as span:
            logger.warning("Reward notification dispatch failed")
            context = span.get_span_context()
    finally:
        configure_logging(service_name="perkmatch-api", environment="development", version="test")

    [entry] = _lines(stream)
    assert entry["trace_id"] == format(context.trace_id, "032x")
    assert entry["span_id"] == format(context.span_id, "016x")


def test_stdlib_logging_is_routed_through_loguru():
    stream = io.StringIO()
    _configure(stream)
    try:
        logging.getLogger("celery.worker").warning("worker heartbeat missed", extra={"queue": "matching"})
    finally:
        configure_logging(service_name="perkmatch-api", environment="development", version="test")

    [entry] = _lines(stream)
    assert entry["message"] == "worker heartbeat missed"
    assert entry["logger"] == "celery.worker"
    assert entry["queue"] == "matching"
