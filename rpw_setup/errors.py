"""Exception taxonomy for account provisioning."""


class SetupError(Exception):
    """Base exception for setup errors."""

    pass


class PermissionError(SetupError):
    """Raised when insufficient permissions are detected."""

    pass


class FetchError(SetupError):
    """Raised when key material is unreachable, empty or unusable."""

    pass


class ProvisioningError(SetupError):
    """Raised when an account, group, sudoers entry or required package cannot be set up."""

    pass


class ExecutionError(SetupError):
    """Raised when command execution fails."""

    pass


class ConfigWarning(SetupError):
    """
    Raised for non-fatal configuration problems.

    The provisioner catches these, logs them as warnings and carries on.
    """

    pass
