# File: lattice_link/errors.py
"""
Error taxonomy for the reconciler.

- ValidationError: malformed desired state, raised before any provider call
- NotFoundError: a referenced dependency is absent
- AmbiguousResourceError: more than one provider resource carries the name
- TransientProviderError: rate limiting or eventual-consistency lag, retried
- OperationError: retries exhausted or a non-retryable provider rejection
- RollbackError: a compensating delete failed during rollback
"""

from typing import List, Optional


class LatticeLinkError(Exception):
    """Base class for every error raised by lattice_link."""


class ValidationError(LatticeLinkError):
    def __init__(self, messages: List[str]):
        self.messages = list(messages)
        super().__init__("Invalid desired state: " + "; ".join(self.messages))


class NotFoundError(LatticeLinkError):
    pass


class AmbiguousResourceError(LatticeLinkError):
    def __init__(self, resource_type, name: str, resource_ids: List[str]):
        self.resource_type = resource_type
        self.name = name
        self.resource_ids = list(resource_ids)
        super().__init__(
            f"{len(self.resource_ids)} {resource_type.value} resources are named "
            f"'{name}' ({', '.join(self.resource_ids)}); remove or rename the "
            f"duplicates before applying"
        )


class TransientProviderError(LatticeLinkError):
    pass


class OperationError(LatticeLinkError):
    def __init__(self, message: str, resource_type=None, key: Optional[str] = None):
        self.resource_type = resource_type
        self.key = key
        super().__init__(message)


class RollbackError(LatticeLinkError):
    def __init__(self, message: str, resource_type=None, key: Optional[str] = None,
                 resource_id: Optional[str] = None):
        self.resource_type = resource_type
        self.key = key
        self.resource_id = resource_id
        super().__init__(message)
