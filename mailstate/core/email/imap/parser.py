"""IMAP command formatting and untagged response parsing.

Lines may arrive with or without the leading ``* `` of an untagged response;
aioimaplib strips it, other sources (logs, tests) keep it.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from mailstate.core.models.flags import SETTABLE_FLAGS, MessageFlags, format_flag_list, parse_flag_tokens
from mailstate.core.models.requests import StoreAction
from mailstate.core.models.state import MessageSummary, ResyncHint, VanishedSet
from mailstate.core.models.unique_id import UniqueId, format_uid_set, parse_uid_set

from .constants import GmailLabels
from .transport import Exists, Expunged, FolderStatus, Notification, StoreCommand

_TOKEN_RE = re.compile(r'\(|\)|"(?:[^"\\]|\\.)*"|[^\s()"]+')
_FETCH_RE = re.compile(r"^(\d+) FETCH (.*)$", re.IGNORECASE | re.DOTALL)
_EXPUNGE_RE = re.compile(r"^(\d+) EXPUNGE\b", re.IGNORECASE)
_EXISTS_RE = re.compile(r"^(\d+) EXISTS\b", re.IGNORECASE)
_VANISHED_RE = re.compile(r"^VANISHED (\(EARLIER\) )?([\d:,]+)", re.IGNORECASE)

_UIDVALIDITY_RE = re.compile(r"\[UIDVALIDITY (\d+)\]", re.IGNORECASE)
_UIDNEXT_RE = re.compile(r"\[UIDNEXT (\d+)\]", re.IGNORECASE)
_HIGHESTMODSEQ_RE = re.compile(r"\[HIGHESTMODSEQ (\d+)\]", re.IGNORECASE)
_NOMODSEQ_RE = re.compile(r"\[NOMODSEQ\]", re.IGNORECASE)
_READ_ONLY_RE = re.compile(r"\[READ-ONLY\]", re.IGNORECASE)
_READ_WRITE_RE = re.compile(r"\[READ-WRITE\]", re.IGNORECASE)
_MODIFIED_RE = re.compile(r"\[MODIFIED ([\d:,]+)\]", re.IGNORECASE)
_COPYUID_RE = re.compile(r"\[COPYUID (\d+) ([\d:,]+) ([\d:,]+)\]", re.IGNORECASE)

_STORE_PREFIX = {StoreAction.ADD: "+", StoreAction.REMOVE: "-", StoreAction.SET: ""}

Token = Union[str, list]


## Formatting


def quote(text: str) -> str:
    """Quote an IMAP string, escaping backslashes and double quotes."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def quote_mailbox(name: str) -> str:
    if name.upper() == "INBOX":
        return "INBOX"
    return quote(name)


def format_label_list(labels: Iterable[str]) -> str:
    """Gmail system labels go out as atoms, everything else quoted."""
    tokens = [label if label in GmailLabels.SYSTEM else quote(label) for label in sorted(labels)]
    return "(" + " ".join(tokens) + ")"


def format_qresync(hint: ResyncHint) -> str:
    """The QRESYNC select parameter for a cached snapshot."""
    params = [str(hint.uid_validity), str(hint.last_known_modseq)]
    if hint.known_uids:
        params.append(format_uid_set(hint.known_uids))
    return "(QRESYNC (" + " ".join(params) + "))"


def store_item(action: StoreAction, name: str, silent: bool) -> str:
    """``+FLAGS.SILENT``, ``X-GM-LABELS`` and friends."""
    return f"{_STORE_PREFIX[action]}{name}{'.SILENT' if silent else ''}"


def store_steps(command: StoreCommand) -> List[Tuple[str, str]]:
    """Translate a StoreCommand into (item, value) pairs sent in order.

    IMAP's ``FLAGS`` replaces flags and keywords together, so a SET that
    leaves one namespace alone becomes a removal followed by an addition.
    """
    if command.is_label_store:
        name, value = "X-GM-LABELS", format_label_list(command.labels)
        return [(store_item(command.action, name, command.silent), value)]

    flags = command.flags if command.flags is not None else MessageFlags.NONE
    keywords = command.keywords if command.keywords is not None else frozenset()

    if command.action is not StoreAction.SET or (command.flags is None) == (command.keywords is None):
        return [(store_item(command.action, "FLAGS", command.silent), format_flag_list(flags, keywords))]

    if command.flags is not None:
        to_remove, remove_keywords = SETTABLE_FLAGS & ~flags, frozenset()
        to_add, add_keywords = flags & SETTABLE_FLAGS, frozenset()
    else:
        to_remove, remove_keywords = MessageFlags.NONE, command.known_keywords - keywords
        to_add, add_keywords = MessageFlags.NONE, keywords

    steps = []
    if to_remove or remove_keywords:
        steps.append(
            (store_item(StoreAction.REMOVE, "FLAGS", command.silent), format_flag_list(to_remove, remove_keywords))
        )
    if to_add or add_keywords or not steps:
        steps.append(
            (store_item(StoreAction.ADD, "FLAGS", command.silent), format_flag_list(to_add, add_keywords))
        )
    return steps


## Parsing


def decode_line(line: Union[bytes, bytearray, str]) -> str:
    if isinstance(line, (bytes, bytearray)):
        line = bytes(line).decode("utf-8", errors="replace")
    line = line.rstrip("\r\n")
    if line.startswith("* "):
        line = line[2:]
    return line


def decode_lines(lines: Iterable[Union[bytes, bytearray, str]]) -> List[str]:
    return [decode_line(line) for line in lines]


def _unquote(token: str) -> str:
    return re.sub(r"\\(.)", r"\1", token[1:-1])


def tokenize(text: str) -> List[Token]:
    """Split an IMAP parenthesised list into nested Python lists."""
    stack: List[list] = [[]]
    for match in _TOKEN_RE.finditer(text):
        token = match.group(0)
        if token == "(":
            nested: list = []
            stack[-1].append(nested)
            stack.append(nested)
        elif token == ")":
            if len(stack) > 1:
                stack.pop()
        elif token.startswith('"'):
            stack[-1].append(_unquote(token))
        else:
            stack[-1].append(token)
    return stack[0]


def parse_fetch(line: str, validity: int = 0) -> Optional[MessageSummary]:
    """Parse ``12 FETCH (UID 42 FLAGS (\\Seen) MODSEQ (9))`` into a summary."""
    match = _FETCH_RE.match(line)
    if not match:
        return None

    tokens = tokenize(match.group(2))
    items = tokens[0] if tokens and isinstance(tokens[0], list) else tokens

    fields = {"index": int(match.group(1)) - 1, "extra": {}}
    for key, value in zip(items[0::2], items[1::2]):
        if not isinstance(key, str):
            continue
        key = key.upper()
        if key == "UID":
            fields["uid"] = UniqueId(int(value), validity)
        elif key == "FLAGS" and isinstance(value, list):
            fields["flags"], fields["keywords"] = parse_flag_tokens(
                token for token in value if isinstance(token, str)
            )
        elif key == "MODSEQ" and isinstance(value, list) and value:
            fields["modseq"] = int(value[0])
        elif key == "X-GM-LABELS" and isinstance(value, list):
            fields["labels"] = frozenset(token for token in value if isinstance(token, str))
        elif isinstance(value, str):
            fields["extra"][key] = value

    return MessageSummary(**fields)


def parse_status(lines: Iterable[str]) -> FolderStatus:
    """Collect folder-level response codes (SELECT/EXAMINE, unsolicited OK)."""
    fields = {}
    for line in lines:
        exists = _EXISTS_RE.match(line)
        if exists:
            fields["exists"] = int(exists.group(1))
        for key, pattern in (
            ("uid_validity", _UIDVALIDITY_RE),
            ("uid_next", _UIDNEXT_RE),
            ("highest_modseq", _HIGHESTMODSEQ_RE),
        ):
            found = pattern.search(line)
            if found:
                fields[key] = int(found.group(1))
        if _NOMODSEQ_RE.search(line):
            fields["no_modseq"] = True
        if _READ_ONLY_RE.search(line):
            fields["read_only"] = True
        elif _READ_WRITE_RE.search(line):
            fields["read_only"] = False
    return FolderStatus(**fields)


def parse_notification(line: str, validity: int = 0) -> Optional[Notification]:
    """Parse one untagged line; None for anything a folder does not track."""
    summary = parse_fetch(line, validity)
    if summary is not None:
        return summary

    match = _EXPUNGE_RE.match(line)
    if match:
        return Expunged(int(match.group(1)) - 1)

    match = _EXISTS_RE.match(line)
    if match:
        return Exists(int(match.group(1)))

    match = _VANISHED_RE.match(line)
    if match:
        return VanishedSet(tuple(parse_uid_set(match.group(2), validity)), earlier=bool(match.group(1)))

    if line.upper().startswith("OK [") and (_HIGHESTMODSEQ_RE.search(line) or _UIDVALIDITY_RE.search(line)):
        return parse_status([line])

    return None


def parse_notifications(lines: Iterable[str], validity: int = 0) -> List[Notification]:
    notifications = []
    for line in lines:
        notification = parse_notification(line, validity)
        if notification is not None:
            notifications.append(notification)
    return notifications


def parse_modified(lines: Sequence[str], validity: int, by_uid: bool) -> List[Union[UniqueId, int]]:
    """Targets refused by a conditional STORE, from the MODIFIED response code.

    Sequence numbers come back as 0-based indexes when the store was not by uid.
    """
    refused: List[Union[UniqueId, int]] = []
    for line in lines:
        match = _MODIFIED_RE.search(line)
        if not match:
            continue
        for uid in parse_uid_set(match.group(1), validity):
            refused.append(uid if by_uid else uid.id - 1)
    return refused


def parse_copyuid(lines: Sequence[str]) -> Optional[Tuple[int, List[UniqueId], List[UniqueId]]]:
    """``[COPYUID validity src dst]``; source uids keep the source validity unset."""
    for line in lines:
        match = _COPYUID_RE.search(line)
        if match:
            validity = int(match.group(1))
            return (
                validity,
                parse_uid_set(match.group(2)),
                parse_uid_set(match.group(3), validity),
            )
    return None
