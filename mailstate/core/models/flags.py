"""Message flags and keywords."""

import re
from enum import IntFlag
from typing import FrozenSet, Iterable, List, Optional, Tuple

from mailstate.core.email.imap.constants import IMAPFlags
from mailstate.utils.errors import InvalidArgumentError


class MessageFlags(IntFlag):
    """System flags a message can carry."""

    NONE = 0
    SEEN = 1 << 0
    ANSWERED = 1 << 1
    FLAGGED = 1 << 2
    DELETED = 1 << 3
    DRAFT = 1 << 4
    # Server-owned: set by the server, never by a client STORE
    RECENT = 1 << 5
    USER_DEFINED = 1 << 6


SETTABLE_FLAGS = (
    MessageFlags.SEEN
    | MessageFlags.ANSWERED
    | MessageFlags.FLAGGED
    | MessageFlags.DELETED
    | MessageFlags.DRAFT
)

_FLAG_NAMES = {
    MessageFlags.SEEN: IMAPFlags.SEEN,
    MessageFlags.ANSWERED: IMAPFlags.ANSWERED,
    MessageFlags.FLAGGED: IMAPFlags.FLAGGED,
    MessageFlags.DELETED: IMAPFlags.DELETED,
    MessageFlags.DRAFT: IMAPFlags.DRAFT,
    MessageFlags.RECENT: IMAPFlags.RECENT,
}

_NAME_TO_FLAG = {name.lower(): flag for flag, name in _FLAG_NAMES.items()}

# atom-specials per RFC 3501, plus the leading backslash reserved for system flags
_KEYWORD_RE = re.compile(r'^[^\s(){}%*"\\\]\x00-\x1f\x7f]+$')


def normalize_keywords(keywords: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    """Validate user keywords and return them as a frozenset.

    ``None`` passes through: it means "keywords not supplied", which is not the
    same thing as an empty set.
    """
    if keywords is None:
        return None
    if isinstance(keywords, str):
        raise InvalidArgumentError(
            "keywords must be an iterable of strings, not a single string",
            details={"keywords": keywords},
        )

    result = set()
    for keyword in keywords:
        if not isinstance(keyword, str) or not _KEYWORD_RE.match(keyword):
            raise InvalidArgumentError(
                f"Invalid keyword: {keyword!r}", details={"keyword": keyword}
            )
        result.add(keyword)

    return frozenset(result)


def flag_names(flags: MessageFlags) -> List[str]:
    """Wire names for the system flags set in ``flags``, in a stable order."""
    return [name for flag, name in _FLAG_NAMES.items() if flags & flag]


def format_flag_list(flags: MessageFlags, keywords: Iterable[str] = ()) -> str:
    """Format flags and keywords as a parenthesised IMAP flag list."""
    tokens = flag_names(flags & SETTABLE_FLAGS)
    tokens.extend(sorted(keywords))
    return "(" + " ".join(tokens) + ")"


def parse_flag_tokens(tokens: Iterable[str]) -> Tuple[MessageFlags, FrozenSet[str]]:
    """Split IMAP flag tokens into system flags and user keywords.

    Unknown backslash flags are ignored; everything else is a keyword.
    """
    flags = MessageFlags.NONE
    keywords = set()

    for token in tokens:
        if not token:
            continue
        if token.startswith("\\"):
            flag = _NAME_TO_FLAG.get(token.lower())
            if flag is not None:
                flags |= flag
            continue
        keywords.add(token)

    return flags, frozenset(keywords)
