from typing import Optional


class HostfyError(Exception):
    """Base error for every failure surfaced by hostfy.

    ``hint`` optionally carries a remediation command shown to the operator.
    """

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        return self.message


class CatalogUnavailable(HostfyError):
    pass


class CatalogEntryNotFound(HostfyError):
    pass


class AlreadyInstalled(HostfyError):
    pass


class DependencyStartFailed(HostfyError):
    pass


class DatabaseOperationFailed(HostfyError):
    pass


class ContainerOperationFailed(HostfyError):
    pass


class HealthTimeout(HostfyError):
    pass


class TemplateUnresolved(HostfyError):
    """Raised only by callers that opt into strict placeholder checks."""


class StateRecordNotFound(HostfyError):
    pass


class StateWriteFailed(HostfyError):
    pass
