"""Domain errors for bootgate."""


class BootstrapError(RuntimeError):
    """Raised when a host bootstrap step cannot continue safely."""


class TransientUnavailable(BootstrapError):
    """A dependency stayed unreachable after its retry budget was spent."""


class ConfigurationFatal(BootstrapError):
    """Configuration or privileges are wrong; retrying will not help."""


class ExternalToolFailure(BootstrapError):
    """An external command failed or could not be executed."""
