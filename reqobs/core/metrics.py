"""
OpenTelemetry instruments for the request pipeline.

Instruments are created against the global meter provider on first use.
Without a configured SDK they are no-ops.
"""

import logging
from typing import Optional

from opentelemetry import metrics

logger = logging.getLogger(__name__)


class ObservabilityInstruments:
    """OpenTelemetry metric instruments for the request pipeline."""

    def __init__(self):
        self.meter = metrics.get_meter("reqobs")

        # Counter instruments
        self.request_counter = self.meter.create_counter(
            name="reqobs_requests_total",
            description="Total number of requests handled by the pipeline",
            unit="1"
        )

        self.audit_failure_counter = self.meter.create_counter(
            name="reqobs_audit_send_failures_total",
            description="Total number of audit records the sink failed to accept",
            unit="1"
        )

        self.panic_counter = self.meter.create_counter(
            name="reqobs_recovered_panics_total",
            description="Total number of unhandled exceptions recovered at the boundary",
            unit="1"
        )

        # Histogram instruments for duration tracking
        self.request_histogram = self.meter.create_histogram(
            name="reqobs_request_duration_seconds",
            description="Duration of requests in seconds",
            unit="s"
        )

        logger.debug("OpenTelemetry metric instruments initialized")

    def record_request(self, protocol: str, method: str, code: str, duration_s: float) -> None:
        attributes = {"protocol": protocol, "method": method, "code": code}
        self.request_counter.add(1, attributes)
        self.request_histogram.record(duration_s, attributes)


_instruments: Optional[ObservabilityInstruments] = None


def get_instruments() -> ObservabilityInstruments:
    """Return the process-wide instruments, creating them on first use."""
    global _instruments
    if _instruments is None:
        _instruments = ObservabilityInstruments()
    return _instruments
