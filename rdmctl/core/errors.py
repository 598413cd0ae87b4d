"""Domain-specific errors for rdmctl."""

from rdmctl.core.exit_codes import ExitCode


class RdmctlError(Exception):
    """Base error for rdmctl."""

    exit_code = ExitCode.SOFTWARE


class UidFormatError(RdmctlError):
    """Raised when a UID string is not of the form xxxx:yyyyyyyy."""

    exit_code = ExitCode.USAGE


class ConfigError(RdmctlError):
    """Raised when the user configuration file is unreadable or invalid."""

    exit_code = ExitCode.DATAERR


class PidStoreError(RdmctlError):
    """Raised when loading PID definition sources fails."""

    exit_code = ExitCode.OSFILE


class PidValidationError(PidStoreError):
    """Raised when a PID definition file does not conform to schema or semantics."""


class PidResolutionError(RdmctlError):
    """Raised when a PID is unknown or does not support the requested command."""

    exit_code = ExitCode.USAGE


class MessageBuildError(RdmctlError):
    """Raised when user arguments do not fit a request message descriptor."""

    exit_code = ExitCode.USAGE

    def __init__(self, message: str, *, schema: str = "") -> None:
        super().__init__(message)
        self.schema = schema


class MessageDecodeError(RdmctlError):
    """Raised when response parameter data does not match its descriptor."""


class TransportError(RdmctlError):
    """Base transport error."""

    exit_code = ExitCode.UNAVAILABLE


class TransportConnectError(TransportError):
    """Raised when the gateway endpoint cannot be set up."""


class TransportSendError(TransportError):
    """Raised when a request datagram cannot be sent."""
