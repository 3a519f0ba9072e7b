"""Domain-specific errors for webosctl."""


class WebosctlError(Exception):
    """Base error for webosctl."""


class ConfigLoadError(WebosctlError):
    """Raised when the configuration file cannot be read."""


class ConfigValidationError(WebosctlError):
    """Raised when the configuration file does not conform to schema."""


class CredentialStoreError(WebosctlError):
    """Raised when the stored pairing credential cannot be read or written."""


class DiscoveryError(WebosctlError):
    """Raised when a network scan cannot be started."""


class CodecError(WebosctlError):
    """Raised when a command cannot be encoded."""


class CommandArgumentError(CodecError):
    """Raised when a command is missing its argument or given an unexpected one."""


class ProtocolError(WebosctlError):
    """Raised when an inbound frame is malformed or has an unknown type."""


class SessionError(WebosctlError):
    """Base session error."""


class SessionStateError(SessionError):
    """Raised when an operation is not valid in the current connection phase."""


class InvalidPinError(SessionError):
    """Raised when a pairing PIN is not exactly eight characters long."""


class DeviceRequestError(SessionError):
    """Raised when the device answers a request with an error frame."""


class TransportError(WebosctlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on WebSocket open failures."""


class TransportSendError(TransportError):
    """Raised when sending a frame or ping fails."""


class TransportTimeoutError(TransportError):
    """Raised when an open or a correlated reply times out."""
