"""
handx Exceptions

Custom exception classes for error handling
"""

from .protocol.types import ErrorCode


class HandxError(Exception):
    """Base handx exception"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to dictionary format"""
        return {
            "error_code": self.error_code.value,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# Multiplexer errors
class TmuxError(HandxError):
    """Generic tmux failure"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.TMUX_ERROR, details)


class TmuxCommandError(TmuxError):
    """tmux invocation failed (non-zero exit, timeout, missing binary)"""

    def __init__(
        self, args: list, message: str, returncode: int = None, details: dict = None
    ):
        super().__init__(message, details)
        self.args_list = list(args)
        self.returncode = returncode


class SessionNotFoundError(TmuxError):
    """Session not found error"""

    def __init__(self, session_name: str, details: dict = None):
        super().__init__(f"session '{session_name}' not found", details)
        self.error_code = ErrorCode.SESSION_NOT_FOUND
        self.session_name = session_name


class SessionAlreadyExistsError(TmuxError):
    """Session already exists error"""

    def __init__(self, session_name: str, details: dict = None):
        super().__init__(f"session '{session_name}' already exists", details)
        self.error_code = ErrorCode.SESSION_ALREADY_EXISTS
        self.session_name = session_name


class WindowNotFoundError(TmuxError):
    """Window not found error"""

    def __init__(self, session_name: str, window_index: int, details: dict = None):
        super().__init__(
            f"window index {window_index} not found in session '{session_name}'",
            details,
        )
        self.error_code = ErrorCode.WINDOW_NOT_FOUND
        self.session_name = session_name
        self.window_index = window_index


class LastWindowError(TmuxError):
    """Closing the only window would destroy the session"""

    def __init__(self, session_name: str, details: dict = None):
        super().__init__(
            f"cannot close the last window in session '{session_name}'", details
        )
        self.session_name = session_name


class PaneNotFoundError(TmuxError):
    """No pane could be resolved for a session/window"""

    def __init__(self, session_name: str, details: dict = None):
        super().__init__(f"no panes found in session '{session_name}'", details)
        self.session_name = session_name


# Authentication errors
class AuthenticationError(HandxError):
    """Authentication error"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.INVALID_TOKEN, details)


class InvalidTokenError(AuthenticationError):
    """Token missing, unknown or expired"""

    def __init__(self, message: str = "Invalid or expired token", details: dict = None):
        super().__init__(message, details)


# Configuration errors
class ConfigurationError(HandxError):
    """Configuration error"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.INTERNAL_ERROR, details)


class InvalidConfigurationError(ConfigurationError):
    """Invalid configuration error"""

    def __init__(self, key: str, value: str, details: dict = None):
        message = f"Invalid configuration: {key} = {value}"
        super().__init__(message, details)
        self.key = key
        self.value = value
