"""
Unit tests for reqobs.core.metrics module.
"""

from unittest.mock import MagicMock

import pytest

from reqobs.core.metrics import ObservabilityInstruments, get_instruments


@pytest.mark.unit
class TestInstruments:
    """Tests for the OpenTelemetry instruments."""

    def test_singleton(self) -> None:
        assert get_instruments() is get_instruments()

    def test_record_request(self) -> None:
        instruments = ObservabilityInstruments()
        instruments.request_counter = MagicMock()
        instruments.request_histogram = MagicMock()

        instruments.record_request("HTTP", "GET managedclusters - READ", "200", 0.25)

        attributes = {"protocol": "HTTP", "method": "GET managedclusters - READ", "code": "200"}
        instruments.request_counter.add.assert_called_once_with(1, attributes)
        instruments.request_histogram.record.assert_called_once_with(0.25, attributes)
