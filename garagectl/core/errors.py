"""Domain-specific errors for garagectl."""


class GaragectlError(Exception):
    """Base error for garagectl."""


class SettingsValidationError(GaragectlError):
    """Raised when a settings file does not conform to schema or semantics."""


class SettingsLoadError(GaragectlError):
    """Raised when reading settings sources fails."""


class DeviceSelectionError(GaragectlError):
    """Raised when a device hint cannot resolve a single peripheral."""


class DeviceDiscoveryError(GaragectlError):
    """Raised when bonded-device listing command(s) fail."""


class RadioUnavailableError(GaragectlError):
    """Raised when the Bluetooth radio is off or absent."""


class LinkFailureError(GaragectlError):
    """Raised when a connection attempt fails or an established link drops."""


class CommandError(GaragectlError):
    """Base error for control-characteristic commands."""


class NotConnectedError(CommandError):
    """Raised when a command is issued while not connected."""


class CharacteristicUnavailableError(CommandError):
    """Raised when the control characteristic cannot be resolved."""


class WriteRejectedError(CommandError):
    """Raised when the platform reports a characteristic write failure."""


class OperationTimeoutError(CommandError):
    """Raised when no write acknowledgement arrives within the timeout."""


class AlreadyInFlightError(CommandError):
    """Raised when a command is sent while another is still pending."""
