"""Tests for the ENVELOPE projection."""

from imapclient.response_parser import parse_fetch_response

from junkrescue.envelope import decode_mime_header, messages_from_fetch


SIMPLE = (
    b'1 (ENVELOPE ("Mon, 1 Jan 2024 12:00:00 +0000" "Hello there" '
    b'(("Alice" NIL "alice" "example.com")) (("Alice" NIL "alice" "example.com")) '
    b'(("Alice" NIL "alice" "example.com")) ((NIL NIL "bob" "test.com")) '
    b'((NIL NIL "carol" "test.com")) NIL NIL "<abc@example.com>"))'
)


def fetch(data):
    """Parse raw FETCH lines the way an IMAPClient in sequence-number mode does."""
    return messages_from_fetch(parse_fetch_response(data, normalise_times=False, uid_is_key=False))


class TestMessagesFromFetch:
    """Tests for messages_from_fetch."""

    def test_simple_envelope(self):
        messages = fetch([SIMPLE])
        assert len(messages) == 1
        message = messages[0]
        assert message.seq == 1
        assert message.senders == ["alice@example.com"]
        assert message.recipients == ["bob@test.com"]
        assert message.cc == ["carol@test.com"]
        assert message.bcc == []
        assert message.subject == "Hello there"
        assert message.message_id == "<abc@example.com>"
        assert message.date.startswith("2024-01-01T12:00:00")

    def test_literal_subject(self):
        data = [
            (b'2 (ENVELOPE ("Mon, 1 Jan 2024 12:00:00 +0000" {16}', b'Quote " inside!!'),
            b' ((NIL NIL "x" "y.com")) NIL NIL ((NIL NIL "me" "home.net")) NIL NIL NIL NIL))',
        ]
        message = fetch(data)[0]
        assert message.seq == 2
        assert message.subject == 'Quote " inside!!'
        assert message.senders == ["x@y.com"]
        assert message.recipients == ["me@home.net"]
        assert message.message_id is None

    def test_sorted_by_sequence_number(self):
        second = SIMPLE.replace(b"1 (ENVELOPE", b"2 (ENVELOPE").replace(b"Hello there", b"Second")
        messages = fetch([second, SIMPLE])
        assert [m.seq for m in messages] == [1, 2]
        assert messages[1].subject == "Second"

    def test_encoded_subject(self):
        data = [SIMPLE.replace(b'"Hello there"', b'"=?utf-8?q?Caf=C3=A9?="')]
        assert fetch(data)[0].subject == "Café"

    def test_nil_subject(self):
        data = [SIMPLE.replace(b'"Hello there"', b"NIL")]
        assert fetch(data)[0].subject == ""

    def test_group_markers_skipped(self):
        data = [SIMPLE.replace(
            b'((NIL NIL "bob" "test.com"))',
            b'((NIL NIL "undisclosed" NIL)(NIL NIL "bob" "test.com")(NIL NIL NIL NIL))',
        )]
        assert fetch(data)[0].recipients == ["bob@test.com"]

    def test_fetch_without_envelope_ignored(self):
        assert fetch([b"3 (FLAGS (\\Seen))"]) == []

    def test_empty_response(self):
        assert messages_from_fetch({}) == []


class TestDecodeMimeHeader:
    """Tests for decode_mime_header."""

    def test_plain(self):
        assert decode_mime_header("plain text") == "plain text"

    def test_empty(self):
        assert decode_mime_header("") == ""

    def test_unknown_charset_kept(self):
        value = "=?x-unknown?q?abc?="
        assert decode_mime_header(value) == value
