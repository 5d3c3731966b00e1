"""
Conftest for unit tests.

Provides fixtures specific to unit tests.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from reqobs.context.models import RequestContext
from reqobs.core.config import ObservabilitySettings

logger = logging.getLogger(__name__)


@pytest.fixture
def test_settings(tmp_path):
    """
    Create settings writing audit files under a temporary directory.

    Returns:
        ObservabilitySettings instance
    """
    return ObservabilitySettings(
        audit_log_dir=str(tmp_path / "audit"),
        log_format="text",
    )


@pytest.fixture
def mock_audit_sink():
    """
    Create a mock audit sink for testing.

    Returns:
        Mock sink whose send() records awaited records
    """
    sink = MagicMock()
    sink.send = AsyncMock()
    sink.close = AsyncMock()
    return sink


@pytest.fixture
def request_context():
    """
    Create a RequestContext carrying all forwarded identifiers.

    Returns:
        RequestContext instance
    """
    return RequestContext(
        correlation_id="corr-123",
        operation_id="op-456",
        client_request_id="client-789",
        tenant_id="tenant-1",
        headers={
            "x-ms-correlation-request-id": "corr-123",
            "x-ms-acs-operation-id": "op-456",
            "x-ms-client-request-id": "client-789",
        },
    )
