"""Domain errors for stackboot."""


class StackbootError(RuntimeError):
    """Base class for errors that abort a server create run."""


class UsageError(StackbootError):
    """Raised for bad input before any remote call is made."""


class ProviderError(StackbootError):
    """Raised by the provider client when the cloud API rejects a call.

    ``kind`` is one of the class constants below; ``code`` is the raw
    provider error code (e.g. ``InvalidAMIID.NotFound``).
    """

    NOT_FOUND = "not-found"
    INVALID_PARAMETER = "invalid-parameter"
    QUOTA_AUTH = "quota-auth"
    TRANSIENT_NETWORK = "transient-network"

    def __init__(self, kind, message, code=None):
        super().__init__(f"{code}: {message}" if code else message)
        self.kind = kind
        self.code = code
        self.message = message


class ProvisioningError(StackbootError):
    """Raised when the provider refuses to create or report the instance."""

    def __init__(self, message, kind=None):
        super().__init__(message)
        self.kind = kind


class ConnectivityError(StackbootError):
    """Raised for socket failures other than timeout or refusal."""
