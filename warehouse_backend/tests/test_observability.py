"""
Observability tests: correlation IDs and structured log lines.
"""

import logging

import pytest

from warehouse_backend.app.core.observability import LOG_FORMAT, StructuredFormatter


def make_record(message, **extra):
    return logging.getLogger("warehouse.http").makeRecord(
        "warehouse.http", logging.INFO, __file__, 1, message, (), None, extra=extra
    )


def test_formatter_renders_extra_fields():
    line = StructuredFormatter(LOG_FORMAT).format(
        make_record("Request completed", correlation_id="abc-123", parcel_id=42)
    )

    assert "[warehouse.http] Request completed" in line
    assert "correlation_id=abc-123" in line
    assert "parcel_id=42" in line


def test_formatter_without_extra_is_plain():
    line = StructuredFormatter(LOG_FORMAT).format(make_record("Seed completed"))
    assert line.endswith("Seed completed")


def test_app_logger_uses_structured_formatter():
    handlers = logging.getLogger("warehouse").handlers
    assert handlers
    assert all(isinstance(h.formatter, StructuredFormatter) for h in handlers)


@pytest.mark.asyncio
async def test_request_log_carries_correlation_id(client, caplog):
    http_logger = logging.getLogger("warehouse.http")
    http_logger.addHandler(caplog.handler)
    try:
        response = await client.get("/health", headers={"X-Correlation-ID": "corr-test-0001"})
    finally:
        http_logger.removeHandler(caplog.handler)

    assert response.headers["X-Correlation-ID"] == "corr-test-0001"

    records = [r for r in caplog.records if r.name == "warehouse.http"]
    assert len(records) == 1
    assert records[0].correlation_id == "corr-test-0001"
    assert records[0].status_code == 200

    line = StructuredFormatter(LOG_FORMAT).format(records[0])
    assert "correlation_id=corr-test-0001" in line
    assert "path=/health" in line


@pytest.mark.asyncio
async def test_generated_correlation_id_is_echoed(client):
    response = await client.get("/health")
    assert response.headers["X-Correlation-ID"]
