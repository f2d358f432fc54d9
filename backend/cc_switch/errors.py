"""
Error taxonomy for the provider-switching engine.

Exception Hierarchy:
    CCSwitchError (base)
    ├── InvalidAppType (400)
    ├── ProviderNotFound (500)
    ├── DuplicateProviderId (500)
    ├── CannotDeleteActiveProvider (500)
    ├── ConfigWriteFailure (500)
    ├── StoreFailure (500)
    └── CompositeFailure (500)

Validation errors are raised before any state is touched. Everything else is
an engine failure and is reported to HTTP callers as a 500 with the kind in
the message.
"""
from __future__ import annotations

from typing import Any, Optional


class CCSwitchError(Exception):
    """
    Base exception for all engine errors.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code for API response, fixed per class
        error_code: Machine-readable error kind
    """

    default_message: str = "An error occurred"
    default_status_code: int = 500

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.status_code = self.default_status_code
        self.error_code = self.__class__.__name__
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


# =============================================================================
# Client Errors (4xx)
# =============================================================================

class InvalidAppType(CCSwitchError):
    """Raised when an application identifier matches no registered AppType."""

    default_status_code = 400

    def __init__(self, raw: Any) -> None:
        self.raw = raw
        super().__init__(f"unknown app type: {raw!r}")


# =============================================================================
# Engine Errors (500)
# =============================================================================

class ProviderNotFound(CCSwitchError):
    def __init__(self, app: str, provider_id: str) -> None:
        self.app = app
        self.provider_id = provider_id
        super().__init__(f"provider {provider_id!r} not found for app {app!r}")


class DuplicateProviderId(CCSwitchError):
    def __init__(self, app: str, provider_id: str) -> None:
        self.app = app
        self.provider_id = provider_id
        super().__init__(f"provider {provider_id!r} already exists for app {app!r}")


class CannotDeleteActiveProvider(CCSwitchError):
    """Raised when deleting the provider that is currently active.

    Switch to another provider first; the current pointer is never cleared
    implicitly.
    """

    def __init__(self, app: str, provider_id: str) -> None:
        self.app = app
        self.provider_id = provider_id
        super().__init__(
            f"provider {provider_id!r} is the active provider for app {app!r} and cannot be deleted"
        )


class ConfigWriteFailure(CCSwitchError):
    """Raised when the live config artifact could not be written or restored.

    The target file is left exactly as it was before the failed call.
    """

    default_message = "failed to write config file"


class StoreFailure(CCSwitchError):
    """Raised when the durable provider record could not be written or read."""

    default_message = "failed to persist provider store"


class CompositeFailure(CCSwitchError):
    """
    Raised when a switch wrote the config artifact but could not commit the
    current pointer.

    The artifact restore is attempted before raising; ``restored`` reports
    whether it succeeded. Callers must treat this as requiring reconciliation
    and may retry the switch.
    """

    def __init__(
        self,
        app: str,
        provider_id: str,
        *,
        config_written: bool = True,
        pointer_committed: bool = False,
        restored: bool = False,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.app = app
        self.provider_id = provider_id
        self.config_written = config_written
        self.pointer_committed = pointer_committed
        self.restored = restored
        self.cause = cause
        detail = (
            f"switch of app {app!r} to {provider_id!r} partially applied "
            f"(config_written={config_written}, pointer_committed={pointer_committed}, "
            f"restored={restored})"
        )
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)

