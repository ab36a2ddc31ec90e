"""Error taxonomy for mailstate."""

from enum import Enum
from typing import Any, Dict


## Error Categories


class ErrorCategory(Enum):
    """Categories of errors for better handling."""

    VALIDATION = "validation"
    STATE = "state"
    SYNC = "sync"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    FILE_SYSTEM = "file_system"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


## Custom Exceptions


class MailStateError(Exception):
    """Base exception for all mailstate errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(
        self, message: str | None = None, details: Dict[str, Any] | None = None
    ):
        """Initialise MailStateError with optional message and details."""
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error details to a dictionary."""
        return {
            "error_type": self.__class__.__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Validation Errors


class InvalidArgumentError(MailStateError, ValueError):
    """Malformed request; always raised before anything reaches the server."""

    category = ErrorCategory.VALIDATION
    user_message = "Invalid argument"


class MessageNotFoundError(InvalidArgumentError):
    """A targeted uid or index is not known to the open folder."""

    user_message = "Message not found"


## State Errors


class InvalidStateError(MailStateError):
    """Operation is not allowed in the current session or folder state."""

    category = ErrorCategory.STATE
    user_message = "Operation not allowed in the current state"


class FolderNotOpenError(InvalidStateError):
    """The folder is not open (or was closed underneath the caller)."""

    user_message = "The folder is not open"


class ReadOnlyFolderError(InvalidStateError):
    """A mutation was attempted on a folder opened read-only."""

    user_message = "The folder is open in read-only mode"


class NotSupportedError(MailStateError):
    """The server or folder lacks the extension an operation needs."""

    category = ErrorCategory.STATE
    user_message = "Operation not supported by the server"


class ModSeqNotSupportedError(NotSupportedError, InvalidStateError):
    """A mod-sequence precondition was used on a folder without mod-sequences."""

    user_message = "The folder does not support mod-sequences"


## Sync Errors


class SyncError(MailStateError):
    """Base exception for resynchronization failures."""

    category = ErrorCategory.SYNC
    user_message = "Mailbox synchronization failed"


class UidValidityMismatchError(SyncError):
    """The cached UIDVALIDITY no longer matches the folder incarnation.

    Non-retryable: every cached uid for the folder is void and the caller must
    rebuild its view from a full listing.
    """

    user_message = "UIDVALIDITY changed; cached UIDs must be discarded"

    def __init__(self, expected: int, actual: int, folder: str | None = None):
        self.expected = expected
        self.actual = actual
        self.folder = folder
        super().__init__(
            f"UIDVALIDITY mismatch for {folder or 'folder'}: "
            f"cached {expected}, server {actual}",
            details={"expected": expected, "actual": actual, "folder": folder},
        )


## Network Errors


class NetworkError(MailStateError):
    """Base exception for network-related errors."""

    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class IMAPError(NetworkError):
    """Exception for IMAP protocol errors."""

    user_message = "The IMAP server rejected the command"


class NetworkTimeoutError(NetworkError):
    """Exception for network timeout errors."""

    user_message = "The connection timed out"


class ConnectionLostError(NetworkError):
    """The connection was re-established and the selected folder was lost."""

    user_message = "The connection was reset; reopen the folder"


## Authentication Errors


class AuthenticationError(MailStateError):
    """Base exception for authentication failures."""

    category = ErrorCategory.AUTHENTICATION
    user_message = "Authentication failed"


class InvalidCredentialsError(AuthenticationError):
    """Exception for invalid login credentials."""

    user_message = "Invalid username or password"


class MissingCredentialsError(AuthenticationError):
    """Exception for missing login credentials."""

    user_message = "IMAP credentials not configured"


## File System Errors


class FileSystemError(MailStateError):
    """Base exception for file system-related errors."""

    category = ErrorCategory.FILE_SYSTEM
    user_message = "A file system error occurred"


## Configuration Errors


class ConfigurationError(MailStateError):
    """Base exception for configuration-related errors."""

    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class MissingConfigError(ConfigurationError):
    """Exception for missing configuration settings."""

    user_message = "Missing configuration settings"


class InvalidConfigError(ConfigurationError):
    """Exception for invalid configuration settings."""

    user_message = "Invalid configuration settings"
