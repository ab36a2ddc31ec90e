"""
Tests for IMAP command formatting and response parsing
"""
import pytest

from mailstate.core.email.imap.parser import (
    decode_line,
    format_label_list,
    format_qresync,
    parse_copyuid,
    parse_fetch,
    parse_modified,
    parse_notification,
    parse_status,
    quote,
    quote_mailbox,
    store_steps,
    tokenize,
)
from mailstate.core.email.imap.transport import Exists, Expunged, FolderStatus, StoreCommand
from mailstate.core.models.flags import MessageFlags
from mailstate.core.models.requests import StoreAction
from mailstate.core.models.state import ResyncHint, VanishedSet
from mailstate.core.models.unique_id import UniqueId


class TestFormatting:
    """Tests for command argument formatting"""

    def test_quote_escapes(self):
        assert quote('a"b\\c') == '"a\\"b\\\\c"'

    def test_inbox_is_an_atom(self):
        assert quote_mailbox("inbox") == "INBOX"
        assert quote_mailbox("Sent Items") == '"Sent Items"'

    def test_system_labels_unquoted(self):
        assert format_label_list({"\\Important"}) == "(\\Important)"
        assert format_label_list({"Receipts"}) == '("Receipts")'

    def test_qresync_with_known_uids(self):
        hint = ResyncHint(67890007, 20050715194045000, (UniqueId(41), UniqueId(43), UniqueId(44)))
        assert format_qresync(hint) == "(QRESYNC (67890007 20050715194045000 41,43:44))"

    def test_qresync_without_known_uids(self):
        assert format_qresync(ResyncHint(1000, 9)) == "(QRESYNC (1000 9))"


class TestStoreSteps:
    """Tests for translating store commands into STORE items"""

    def test_add_silent(self):
        command = StoreCommand(StoreAction.ADD, flags=MessageFlags.SEEN, silent=True)
        assert store_steps(command) == [("+FLAGS.SILENT", "(\\Seen)")]

    def test_remove_keywords(self):
        command = StoreCommand(StoreAction.REMOVE, keywords=frozenset({"$Work"}))
        assert store_steps(command) == [("-FLAGS", "($Work)")]

    def test_set_both_namespaces_is_one_replace(self):
        command = StoreCommand(StoreAction.SET, flags=MessageFlags.SEEN, keywords=frozenset({"$A"}))
        assert store_steps(command) == [("FLAGS", "(\\Seen $A)")]

    def test_empty_set_clears(self):
        assert store_steps(StoreCommand(StoreAction.SET)) == [("FLAGS", "()")]

    def test_set_flags_only_preserves_keywords(self):
        command = StoreCommand(StoreAction.SET, flags=MessageFlags.DRAFT)
        assert store_steps(command) == [
            ("-FLAGS", "(\\Seen \\Answered \\Flagged \\Deleted)"),
            ("+FLAGS", "(\\Draft)"),
        ]

    def test_set_keywords_only_strips_known_keywords(self):
        command = StoreCommand(
            StoreAction.SET,
            keywords=frozenset({"$Home"}),
            known_keywords=frozenset({"$Home", "$Work"}),
        )
        assert store_steps(command) == [("-FLAGS", "($Work)"), ("+FLAGS", "($Home)")]

    def test_set_keywords_only_with_nothing_to_strip(self):
        command = StoreCommand(StoreAction.SET, keywords=frozenset())
        assert store_steps(command) == [("+FLAGS", "()")]

    def test_labels(self):
        command = StoreCommand(StoreAction.REMOVE, labels=frozenset({"\\Inbox"}))
        assert store_steps(command) == [("-X-GM-LABELS", "(\\Inbox)")]


class TestParsing:
    """Tests for untagged response parsing"""

    def test_decode_line_strips_prefix(self):
        assert decode_line(b"* 4 EXISTS\r\n") == "4 EXISTS"
        assert decode_line("OK done") == "OK done"

    def test_tokenize_nested(self):
        assert tokenize('UID 4 FLAGS (\\Seen) X (a ("b c"))') == [
            "UID",
            "4",
            "FLAGS",
            ["\\Seen"],
            "X",
            ["a", ["b c"]],
        ]

    def test_parse_fetch(self):
        summary = parse_fetch("12 FETCH (UID 42 FLAGS (\\Seen $Work) MODSEQ (9))", validity=1000)

        assert summary.index == 11
        assert summary.uid == UniqueId(42, 1000)
        assert summary.flags == MessageFlags.SEEN
        assert summary.keywords == {"$Work"}
        assert summary.modseq == 9
        assert summary.labels is None

    def test_parse_fetch_labels_and_extra_items(self):
        summary = parse_fetch('1 FETCH (X-GM-LABELS (\\Important "Work Stuff") RFC822.SIZE 1234 UID 7)')

        assert summary.labels == {"\\Important", "Work Stuff"}
        assert summary.extra == {"RFC822.SIZE": "1234"}
        assert summary.flags is None

    def test_parse_fetch_rejects_other_lines(self):
        assert parse_fetch("3 EXPUNGE") is None

    def test_expunge_and_exists(self):
        assert parse_notification("3 EXPUNGE") == Expunged(2)
        assert parse_notification("5 EXISTS") == Exists(5)

    def test_vanished_earlier(self):
        notification = parse_notification("VANISHED (EARLIER) 1:3,7", validity=5)

        assert notification == VanishedSet(
            (UniqueId(1, 5), UniqueId(2, 5), UniqueId(3, 5), UniqueId(7, 5)), earlier=True
        )

    def test_vanished_live(self):
        assert parse_notification("VANISHED 4").earlier is False

    def test_highest_modseq_code(self):
        assert parse_notification("OK [HIGHESTMODSEQ 715] Highest") == FolderStatus(highest_modseq=715)

    def test_untracked_lines_ignored(self):
        assert parse_notification("OK [CLOSED] Previous mailbox closed") is None
        assert parse_notification("CAPABILITY IMAP4rev1 QRESYNC") is None

    def test_parse_status(self):
        status = parse_status(
            [
                "172 EXISTS",
                "OK [UIDVALIDITY 3857529045] UIDs valid",
                "OK [UIDNEXT 4392] Predicted next UID",
                "OK [HIGHESTMODSEQ 715194045007] Highest",
                "[READ-WRITE] SELECT completed",
            ]
        )

        assert status == FolderStatus(
            exists=172,
            uid_validity=3857529045,
            uid_next=4392,
            highest_modseq=715194045007,
            read_only=False,
        )

    def test_parse_status_nomodseq(self):
        status = parse_status(["OK [NOMODSEQ] Sorry", "[READ-ONLY] EXAMINE completed"])
        assert status.no_modseq
        assert status.read_only

    def test_parse_modified_by_uid(self):
        lines = ["OK [MODIFIED 7,9:10] Conditional STORE failed"]
        assert parse_modified(lines, 1000, by_uid=True) == [
            UniqueId(7, 1000),
            UniqueId(9, 1000),
            UniqueId(10, 1000),
        ]

    def test_parse_modified_by_index(self):
        assert parse_modified(["OK [MODIFIED 2] failed"], 1000, by_uid=False) == [1]

    def test_parse_copyuid(self):
        validity, source, destination = parse_copyuid(["OK [COPYUID 38505 304,319:320 3956:3958] Done"])

        assert validity == 38505
        assert [uid.id for uid in source] == [304, 319, 320]
        assert destination == [UniqueId(3956, 38505), UniqueId(3957, 38505), UniqueId(3958, 38505)]

    def test_parse_copyuid_missing(self):
        assert parse_copyuid(["OK COPY completed"]) is None

    @pytest.mark.parametrize("line", ["", "garbage", "* BYE logging out"])
    def test_unknown_lines(self, line):
        assert parse_notification(decode_line(line)) is None
