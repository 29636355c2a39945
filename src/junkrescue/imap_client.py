"""IMAP client for Junk folder operations."""

from __future__ import annotations

import imaplib
import json
import logging
import ssl
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

import imapclient
from imapclient.exceptions import IMAPClientError

from junkrescue.envelope import MailboxMessage, messages_from_fetch
from junkrescue.errors import AuthError, ImapConnectionError, MoveError, ProtocolError

if TYPE_CHECKING:
    from junkrescue.config import ImapSettings
    from junkrescue.dialer import Dialer
    from junkrescue.resolver import AccountCredential

logger = logging.getLogger(__name__)


def format_sequence_set(seqs: Iterable[int]) -> str:
    """Render message numbers as a compact IMAP sequence set (``1:3,7``)."""
    ordered = sorted(set(seqs))
    if not ordered:
        raise ValueError("Empty sequence set")
    ranges = []
    start = prev = ordered[0]
    for seq in ordered[1:]:
        if seq == prev + 1:
            prev = seq
            continue
        ranges.append((start, prev))
        start = prev = seq
    ranges.append((start, prev))
    return ",".join(str(a) if a == b else f"{a}:{b}" for a, b in ranges)


class _DialedIMAP4_SSL(imaplib.IMAP4_SSL):
    """IMAP4_SSL whose TCP stream is opened by a dialer (possibly via a proxy)."""

    def __init__(self, host: str, port: int, dialer: Dialer, ssl_context: ssl.SSLContext, timeout: float | None):
        self._dialer = dialer
        super().__init__(host, port, ssl_context=ssl_context, timeout=timeout)

    def _create_socket(self, timeout):
        sock = self._dialer(self.host, self.port, timeout)
        return self.ssl_context.wrap_socket(sock, server_hostname=self.host)


class _DialedIMAPClient(imapclient.IMAPClient):
    """imapclient connection that addresses messages by sequence number
    and reaches the server through a dialer."""

    def __init__(self, host: str, port: int, dialer: Dialer, ssl_context: ssl.SSLContext, timeout: float | None):
        self._dialer = dialer
        self._connect_timeout = timeout
        super().__init__(host, port=port, use_uid=False, ssl=True, ssl_context=ssl_context, timeout=timeout)

    def _create_IMAP4(self) -> imaplib.IMAP4:
        return _DialedIMAP4_SSL(self.host, self.port, self._dialer, self.ssl_context, self._connect_timeout)


class IMAPClient:
    """IMAP session for one account."""

    def __init__(self, account: AccountCredential, dialer: Dialer, settings: ImapSettings):
        """Initialize the IMAP client."""
        self.account = account
        self.dialer = dialer
        self.settings = settings
        self.host, self.port = account.server_host_port()
        self._connection: imapclient.IMAPClient | None = None
        self._selected_folder: str | None = None
        self.capabilities: set[str] = set()

    def __enter__(self) -> IMAPClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.settings.verify_ssl:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def connect(self) -> None:
        """Open the TLS connection to the IMAP server.

        Raises:
            ImapConnectionError: If the server (or proxy) cannot be reached
        """
        logger.info(json.dumps({"event": "connecting", "host": self.host, "port": self.port}))
        try:
            self._connection = _DialedIMAPClient(
                self.host,
                self.port,
                dialer=self.dialer,
                ssl_context=self._ssl_context(),
                timeout=self.settings.timeout,
            )
        except (OSError, IMAPClientError) as e:
            raise ImapConnectionError(f"Cannot connect to {self.host}:{self.port} - {e}") from e

        self._refresh_capabilities()
        logger.info(json.dumps({"event": "connected", "host": self.host, "port": self.port}))

    def login(self) -> None:
        """Authenticate with the account credentials.

        Raises:
            AuthError: If the server rejects the credentials
        """
        conn = self._require_connection()
        try:
            conn.login(self.account.username, self.account.password)
        except (OSError, IMAPClientError) as e:
            raise AuthError(f"Login as {self.account.username} failed: {e}") from e

        # Servers often advertise more capabilities after authentication
        self._refresh_capabilities()
        logger.info(json.dumps({"event": "logged_in", "username": self.account.username}))

    def _refresh_capabilities(self) -> None:
        conn = self._require_connection()
        try:
            capabilities = conn.capabilities()
        except (OSError, IMAPClientError) as e:
            logger.debug(f"CAPABILITY failed: {e}")
            return
        self.capabilities = {
            (c.decode("ascii", errors="replace") if isinstance(c, bytes) else c).upper()
            for c in capabilities
        }

    def _require_connection(self) -> imapclient.IMAPClient:
        if not self._connection:
            raise RuntimeError("Not connected")
        return self._connection

    def disconnect(self) -> None:
        """Log out and drop the connection."""
        if self._connection:
            try:
                self._connection.logout()
            except (OSError, IMAPClientError) as e:
                logger.warning(f"Error during logout: {e}")
            finally:
                self._connection = None
                self._selected_folder = None

    def iter_mailboxes(self) -> Iterator[str]:
        """Yield the names of all mailboxes of the account.

        Raises:
            ProtocolError: If LIST fails
        """
        conn = self._require_connection()
        try:
            folders = conn.list_folders()
        except (OSError, IMAPClientError) as e:
            raise ProtocolError(f"LIST failed: {e}") from e

        for _flags, _delimiter, name in folders:
            yield name

    def list_mailboxes(self) -> list[str]:
        """Return all mailbox names."""
        return list(self.iter_mailboxes())

    def select_folder(self, folder: str, readonly: bool = False) -> int:
        """Select a folder and return its message count.

        Raises:
            ProtocolError: If SELECT fails
        """
        conn = self._require_connection()
        logger.debug(f"Selecting folder: {folder}")
        try:
            info = conn.select_folder(folder, readonly=readonly)
        except (OSError, IMAPClientError) as e:
            raise ProtocolError(f"Select {folder} failed: {e}") from e

        self._selected_folder = folder
        try:
            return int(info[b"EXISTS"])
        except (KeyError, TypeError, ValueError):
            raise ProtocolError(f"Select {folder} returned no message count: {info}") from None

    def iter_envelopes(self, count: int, batch_size: int = 100) -> Iterator[MailboxMessage]:
        """Yield the envelope of messages 1..count in ascending order.

        Raises:
            ProtocolError: If a FETCH fails or cannot be parsed
        """
        conn = self._require_connection()
        if not self._selected_folder:
            raise RuntimeError("No folder selected")

        for start in range(1, count + 1, batch_size):
            end = min(start + batch_size - 1, count)
            try:
                response = conn.fetch(f"{start}:{end}", ["ENVELOPE"])
            except (OSError, IMAPClientError) as e:
                raise ProtocolError(f"Fetch {start}:{end} failed: {e}") from e

            yield from (m for m in messages_from_fetch(response) if start <= m.seq <= end)

    def move(self, seqs: Iterable[int], target_folder: str) -> None:
        """Move messages of the selected folder to another folder.

        Uses MOVE when the server supports it, otherwise COPY, flag as
        deleted and EXPUNGE.

        Raises:
            MoveError: If any step fails
        """
        conn = self._require_connection()
        if not self._selected_folder:
            raise RuntimeError("No folder selected")

        seqset = format_sequence_set(seqs)
        try:
            if "MOVE" in self.capabilities:
                conn.move(seqset, target_folder)
                return

            conn.copy(seqset, target_folder)
            conn.delete_messages(seqset, silent=True)
            conn.expunge()
        except (OSError, IMAPClientError) as e:
            raise MoveError(f"Move {seqset} to {target_folder} failed: {e}") from e
