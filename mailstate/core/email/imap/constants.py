"""IMAP constants and configuration values."""


class IMAPResponse:
    """Standard IMAP response codes."""

    OK = "OK"
    NO = "NO"
    BAD = "BAD"


class Timeouts:
    """Timeout values for IMAP operations (in seconds)."""

    IMAP_CONNECT = 30.0  # Initial connection timeout
    IMAP_LOGIN = 30.0  # Login operation timeout
    IMAP_SELECT = 30.0  # SELECT may stream a full QRESYNC delta
    IMAP_STORE = 10.0  # STORE operation timeout (per batch)
    IMAP_COPY = 10.0  # COPY/MOVE operation timeout
    IMAP_ENABLE = 10.0  # ENABLE operation timeout
    IMAP_NOOP = 5.0  # NOOP (keep-alive) timeout


class IMAPCapabilities:
    """Capability names this library cares about."""

    CONDSTORE = "CONDSTORE"
    QRESYNC = "QRESYNC"
    UIDPLUS = "UIDPLUS"
    MOVE = "MOVE"
    GMAIL_EXT = "X-GM-EXT-1"


class IMAPFlags:
    """Standard IMAP flags."""

    SEEN = "\\Seen"  # Read/unread status
    FLAGGED = "\\Flagged"  # Starred/flagged
    DELETED = "\\Deleted"  # Marked for deletion
    ANSWERED = "\\Answered"  # Has been replied to
    DRAFT = "\\Draft"  # Is a draft
    RECENT = "\\Recent"  # Recently arrived


class GmailLabels:
    """Gmail system labels, sent as atoms rather than quoted strings."""

    SYSTEM = frozenset(
        {
            "\\AllMail",
            "\\Drafts",
            "\\Important",
            "\\Inbox",
            "\\Spam",
            "\\Sent",
            "\\Starred",
            "\\Trash",
        }
    )
