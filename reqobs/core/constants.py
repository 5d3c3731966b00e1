"""
Header names and canonical keys shared across the pipeline.

Details on the client request headers can be found here:
https://github.com/Azure/azure-resource-manager-rpc/blob/master/v1.0/common-api-details.md#client-request-headers
"""

from typing import Dict


# Canonical keys used inside RequestContext and log records
CORRELATION_ID_KEY = "correlation_id"
OPERATION_ID_KEY = "operation_id"
CLIENT_REQUEST_ID_KEY = "client_request_id"
TENANT_ID_KEY = "tenant_id"
ACCEPT_LANGUAGE_KEY = "accept_language"

# Inbound identifier headers
CORRELATION_ID_HEADER = "x-ms-correlation-request-id"
OPERATION_ID_HEADER = "x-ms-acs-operation-id"
CLIENT_REQUEST_ID_HEADER = "x-ms-client-request-id"
HOME_TENANT_ID_HEADER = "x-ms-home-tenant-id"
ACCEPT_LANGUAGE_HEADER = "accept-language"

# Caller identity (trust) headers
CLIENT_APP_ID_HEADER = "x-ms-client-app-id"
CLIENT_PRINCIPAL_NAME_HEADER = "x-ms-client-principal-name"
CLIENT_TENANT_ID_HEADER = "x-ms-client-tenant-id"

REGION_HEADER = "region"
USER_AGENT_HEADER = "user-agent"

# Path variables carrying the subscription id and resource group in routed URLs
SUBSCRIPTION_ID_PATH_PARAM = "subscriptionId"
RESOURCE_GROUP_PATH_PARAM = "resourceGroup"

# Ingress deadline applied when none is configured
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0

# Log sources
API_REQUEST_LOG_SOURCE = "ApiRequestLog"
CTX_LOG_SOURCE = "CtxLog"

NO_CONTEXT_TAG = "self gen, not available in ctx"


DEFAULT_EXTRACTION_RULES: Dict[str, str] = {
    CORRELATION_ID_KEY: CORRELATION_ID_HEADER,
    OPERATION_ID_KEY: OPERATION_ID_HEADER,
    CLIENT_REQUEST_ID_KEY: CLIENT_REQUEST_ID_HEADER,
    TENANT_ID_KEY: HOME_TENANT_ID_HEADER,
    ACCEPT_LANGUAGE_KEY: ACCEPT_LANGUAGE_HEADER,
}

# Identifiers forwarded verbatim to dependent calls
FORWARDED_IDENTIFIERS: Dict[str, str] = {
    CORRELATION_ID_KEY: CORRELATION_ID_HEADER,
    OPERATION_ID_KEY: OPERATION_ID_HEADER,
    CLIENT_REQUEST_ID_KEY: CLIENT_REQUEST_ID_HEADER,
}

# Identifiers mirrored back onto the response
DEFAULT_METADATA_TO_HEADER: Dict[str, str] = {
    OPERATION_ID_KEY: OPERATION_ID_HEADER,
    CLIENT_REQUEST_ID_KEY: CLIENT_REQUEST_ID_HEADER,
}
