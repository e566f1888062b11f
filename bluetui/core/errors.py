"""Domain-specific errors for bluetui."""


class BluetuiError(Exception):
    """Base error for bluetui."""


class ConfigValidationError(BluetuiError):
    """Raised when the config file does not conform to schema or semantics."""


class ConfigLoadError(BluetuiError):
    """Raised when reading the config file fails."""


class DecodeError(BluetuiError):
    """Raised when a property map lacks a required field or has the wrong type."""


class StaleEntityError(BluetuiError):
    """Raised when an update targets an entity that is not tracked."""


class UnsupportedOperationError(BluetuiError):
    """Raised when an action is not valid for the entity or its state."""


class BusyError(BluetuiError):
    """Raised when an operation slot or adapter lock is already held."""


class NoAdaptersError(BluetuiError):
    """Raised when no Bluetooth adapter is available."""


class AdapterNotFoundError(BluetuiError):
    """Raised when a requested adapter does not exist."""


class DeviceSelectionError(BluetuiError):
    """Raised when a device hint cannot resolve a single device."""


class DeviceNotReadyError(BluetuiError):
    """Raised when a device is not in the state an action needs."""


class AuthorizationRejectedError(BluetuiError):
    """Raised when a pairing or transfer request is declined."""


class TransferError(BluetuiError):
    """Raised when a file transfer cannot be completed or saved."""


class NetworkError(BluetuiError):
    """Raised when a network connection fails to activate."""


class NetworkAlreadyActiveError(NetworkError):
    """Raised when the requested network connection is already active."""


class TransportError(BluetuiError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the message bus cannot be reached."""


class TransportCallError(TransportError):
    """Raised when a remote method call fails."""

    def __init__(self, message: str, *, error_name: str | None = None) -> None:
        super().__init__(message)
        self.error_name = error_name
