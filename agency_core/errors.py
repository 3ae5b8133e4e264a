from __future__ import annotations


class TenancyError(Exception):
    """Base error for tenant selection, access validation and permission resolution."""


class AuthenticationRequired(TenancyError):
    def __init__(self, detail: str = "authenticated identity required") -> None:
        super().__init__(detail)


class AccessDenied(TenancyError):
    """Raised once every access-validation tier has been exhausted without a grant."""

    def __init__(self, tenant_id: str, reason: str | None = None) -> None:
        self.tenant_id = tenant_id
        self.reason = reason or "access_denied"
        super().__init__(f"Access denied to tenant '{tenant_id}': {self.reason}")


class TenantNotFound(TenancyError):
    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' not found or inactive")


class MutexTimeout(TenancyError):
    """Lease not acquired before the deadline. Callers skip the guarded operation."""

    def __init__(self, lock_name: str, timeout_ms: int) -> None:
        self.lock_name = lock_name
        self.timeout_ms = timeout_ms
        super().__init__(f"Lease '{lock_name}' not acquired within {timeout_ms}ms")


class PermissionFetchFailed(TenancyError):
    def __init__(self, tenant_id: str, detail: str | None = None) -> None:
        self.tenant_id = tenant_id
        super().__init__(detail or f"Could not load role data for tenant '{tenant_id}'")


class LoadFailed(TenancyError):
    """The tenant list could not be retrieved. Distinct from having zero tenants."""


class SessionLoadTimeout(TenancyError):
    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"Session load did not complete within {seconds:g}s")


class RemoteServiceError(TenancyError):
    """A call to the remote authorization service failed in transport or returned an error."""

    def __init__(self, operation: str, detail: str | None = None, status_code: int | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        message = f"Remote operation '{operation}' failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
