"""Projection of IMAP ENVELOPE data onto the fields allow-rules look at."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from typing import Any

from imapclient.response_types import Address, Envelope

logger = logging.getLogger(__name__)


@dataclass
class MailboxMessage:
    """Envelope projection of a message in the selected mailbox."""

    seq: int
    senders: list[str] = field(default_factory=list)
    recipients: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    subject: str = ""
    message_id: str | None = None
    date: str | None = None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def decode_mime_header(value: str) -> str:
    """Decode an RFC 2047 encoded header value."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeError):
        return value


def _addresses(addresses: Iterable[Address] | None) -> list[str]:
    """Render ENVELOPE addresses as ``mailbox@host`` strings."""
    result = []
    for address in addresses or ():
        # Group start/end markers carry no host
        if not address.mailbox or not address.host:
            continue
        result.append(f"{_text(address.mailbox)}@{_text(address.host)}")
    return result


def message_from_envelope(seq: int, envelope: Envelope) -> MailboxMessage:
    """Build a MailboxMessage from an imapclient Envelope."""
    return MailboxMessage(
        seq=seq,
        senders=_addresses(envelope.from_),
        recipients=_addresses(envelope.to),
        cc=_addresses(envelope.cc),
        bcc=_addresses(envelope.bcc),
        subject=decode_mime_header(_text(envelope.subject)),
        message_id=_text(envelope.message_id) or None,
        date=envelope.date.isoformat() if envelope.date else None,
    )


def messages_from_fetch(response: Mapping[int, Mapping[bytes, Any]]) -> list[MailboxMessage]:
    """Turn the result of ``IMAPClient.fetch(..., ["ENVELOPE"])`` into messages.

    Args:
        response: Fetch result keyed by message sequence number

    Returns:
        Messages in ascending sequence order
    """
    messages = []
    for seq, data in response.items():
        envelope = data.get(b"ENVELOPE")
        if envelope is None:
            # Unsolicited FETCH (e.g. a FLAGS update) without envelope
            logger.debug(f"Ignoring FETCH data without ENVELOPE for message #{seq}")
            continue
        messages.append(message_from_envelope(seq, envelope))
    return sorted(messages, key=lambda m: m.seq)
