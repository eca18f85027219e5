# File: lattice_link/providers/aws.py
"""Shared boto3 plumbing: error classification and paginated listing."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..errors import NotFoundError, OperationError, TransientProviderError
from ..metrics import METRICS

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = {
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "InternalServerException",
    "InternalError",
    "ServiceUnavailable",
    "ConflictException",
}

NOT_FOUND_ERROR_CODES = {
    "ResourceNotFoundException",
    "InvalidGroup.NotFound",
    "InvalidPermission.NotFound",
    "InvalidSecurityGroupRuleId.NotFound",
    "InvalidPrefixListID.NotFound",
}


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


@contextmanager
def translate_errors(description: str, resource_type=None, key=None,
                     missing_parent_is_transient: bool = False) -> Iterator[None]:
    """Re-raise botocore failures as lattice_link errors.

    Not-found becomes NotFoundError, unless the call creates a child under a
    parent that was just created: the provider may not see the parent yet, so
    the error is retried as transient.
    """
    try:
        yield
    except ClientError as e:
        code = error_code(e)
        message = e.response.get("Error", {}).get("Message", str(e))
        if code in TRANSIENT_ERROR_CODES:
            raise TransientProviderError(f"{description}: {code}: {message}") from e
        if code in NOT_FOUND_ERROR_CODES:
            if missing_parent_is_transient:
                raise TransientProviderError(f"{description}: parent not visible yet: {message}") from e
            raise NotFoundError(f"{description}: {message}") from e
        METRICS["provider_errors"].labels(kind="permanent").inc()
        raise OperationError(f"{description}: {code}: {message}", resource_type=resource_type, key=key) from e
    except (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError) as e:
        raise TransientProviderError(f"{description}: {e}") from e
    except BotoCoreError as e:
        # missing credentials or an invalid request parameter
        METRICS["provider_errors"].labels(kind="permanent").inc()
        raise OperationError(f"{description}: {e}", resource_type=resource_type, key=key) from e


def paginate(client, operation: str, result_key: str, **kwargs) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    paginator = client.get_paginator(operation)
    for page in paginator.paginate(**kwargs):
        items.extend(page.get(result_key, []))
    return items
