from typing import Optional, Dict, Any


class ProvisionerException(Exception):
    """Base exception for all provisioner errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.message} (code={self.code})"


class ConfigurationError(ProvisionerException):
    """Raised when application settings or credentials are invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, retryable=False, details=details)


class InvalidConfigError(ProvisionerException):
    """Raised when a resource configuration cannot be reconciled as supplied."""
    def __init__(self, message: str, code: str = "invalid_config", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, retryable=False, details=details)


class MalformedIdentityError(ProvisionerException):
    """Raised when a persisted resource handle does not parse."""
    def __init__(self, message: str, code: str = "malformed_identity", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, retryable=False, details=details)


class AlreadyExistsError(ProvisionerException):
    """Raised when a new resource collides with an unmanaged backend object."""
    def __init__(self, resource_id: str, kind: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"A resource with the ID {resource_id!r} already exists - "
            f"to be managed this {kind} resource needs to be imported first",
            code="already_exists",
            retryable=False,
            details={"resource_id": resource_id, "kind": kind, **(details or {})},
        )
        self.resource_id = resource_id


class TypeMismatchError(ProvisionerException):
    """Raised when the backend returns an object of an unexpected kind."""
    def __init__(self, expected: str, received: Optional[str], details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Classifying backend object: expected kind {expected!r}, received {received!r}",
            code="type_mismatch",
            retryable=False,
            details={"expected": expected, "received": received, **(details or {})},
        )
        self.expected = expected
        self.received = received


class BackendError(ProvisionerException):
    """Raised when a backend call fails. The original error is kept as `cause`."""
    def __init__(self, message: str, cause: Optional[BaseException] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="backend_error", retryable=False, details=details)
        self.cause = cause


class ReconcileTimeoutError(ProvisionerException):
    """Raised when an operation exceeds its deadline. The whole operation may be retried."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="timeout_error", retryable=True, details=details)


class BackendNotFoundError(ProvisionerException):
    """Raised by backend implementations when the addressed object does not exist."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="not_found", retryable=False, details=details)
