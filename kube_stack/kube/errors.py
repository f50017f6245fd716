from __future__ import annotations
import json
from typing import Any, Optional
from kubernetes.client.exceptions import ApiException


class KubeStackError(Exception):
    """Base class for all kube_stack errors."""


class InvalidResource(KubeStackError):
    pass


class ManifestError(KubeStackError):
    def __init__(self, path: str, message: str):
        super().__init__(f'{path}: {message}')
        self.path = path


class KubeError(KubeStackError):
    """API server rejected a request."""

    status: Optional[int] = None

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        if status is not None:
            self.status = status
        self.reason = reason
        self.message = message

    def __str__(self):
        prefix = f'{self.status} ' if self.status else ''
        reason = f'{self.reason}: ' if self.reason else ''
        return f'{prefix}{reason}{self.message}'


class Unauthorized(KubeError):
    status = 401


class Forbidden(KubeError):
    status = 403


class NotFound(KubeError):
    status = 404


class Conflict(KubeError):
    status = 409


class Invalid(KubeError):
    status = 422


class ServerError(KubeError):
    status = 500


_STATUS_ERRORS = {
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    409: Conflict,
    422: Invalid,
}


def _status_body(body: Any) -> dict:
    if not body:
        return {}
    if isinstance(body, bytes):
        body = body.decode('utf-8', errors='replace')
    try:
        parsed = json.loads(body)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def error_from_api_exception(ex: ApiException) -> KubeError:
    """Convert a kubernetes ApiException into a typed KubeError."""
    status = getattr(ex, 'status', None)
    body = _status_body(getattr(ex, 'body', None))
    reason = body.get('reason') or getattr(ex, 'reason', None)
    message = body.get('message') or getattr(ex, 'reason', None) or 'request failed'
    if status in _STATUS_ERRORS:
        cls = _STATUS_ERRORS[status]
    elif status is not None and status >= 500:
        cls = ServerError
    else:
        cls = KubeError
    return cls(message, status=status, reason=reason)


class ApplyError(KubeStackError):
    """A create/update/get call failed while applying a stack."""

    def __init__(self, operation: str, resource, cause: Exception):
        self.operation = operation
        self.resource = resource
        self.cause = cause
        target = resource.describe() if resource is not None else 'resources'
        super().__init__(f'{operation} {target} failed: {cause}')


class PruneError(KubeStackError):
    def __init__(self, operation: str, resource, cause: Exception):
        self.operation = operation
        self.resource = resource
        self.cause = cause
        target = resource.describe() if resource is not None else 'resources'
        super().__init__(f'{operation} {target} failed: {cause}')
