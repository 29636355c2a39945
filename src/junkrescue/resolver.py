"""Account resolution: turns account declarations into connection parameters."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from junkrescue.config import AccountConfig, AccountsFileConfig
from junkrescue.errors import ConfigError, ProxyConfigError, ResolutionError

logger = logging.getLogger(__name__)

DEFAULT_IMAP_PORT = 993
DEFAULT_DELIMITER = ":"


class ProxyKind(str, Enum):
    """Supported outbound network paths."""

    NONE = "none"
    HTTPS = "https"
    SOCKS4 = "socks4"
    SOCKS5 = "socks5"

    @classmethod
    def parse(cls, value: str | None) -> ProxyKind:
        """Parse a declared proxy type; empty means no proxy."""
        if not value:
            return cls.NONE
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ProxyConfigError(f"Unsupported proxy type: {value}") from None


# Leading sigil on a proxy column of the flat accounts file
PROXY_SIGILS: dict[str, ProxyKind] = {
    "#": ProxyKind.HTTPS,
    "+": ProxyKind.SOCKS4,
    "*": ProxyKind.SOCKS5,
}


@dataclass(frozen=True)
class ProxyDescriptor:
    """Where and how to tunnel an account's IMAP connection."""

    kind: ProxyKind
    address: str = ""
    username: str | None = None
    password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.kind is not ProxyKind.NONE and not self.address:
            raise ProxyConfigError(f"{self.kind.value} proxy requires an address")

    def host_port(self) -> tuple[str, int]:
        """Split the proxy address into host and port."""
        return split_host_port(self.address, default_port=None, error=ProxyConfigError)


@dataclass(frozen=True)
class AccountCredential:
    """A fully resolved account, ready to be processed."""

    username: str
    password: str = field(repr=False)
    server: str | None
    proxy: ProxyDescriptor | None = None
    source: str = ""

    def server_host_port(self) -> tuple[str, int]:
        """Split the IMAP server address into host and port."""
        if not self.server:
            raise ResolutionError(f"No IMAP server for {self.username}")
        return split_host_port(self.server, default_port=DEFAULT_IMAP_PORT)


@dataclass(frozen=True)
class ProviderPattern:
    """Maps the shape of a username to a well-known IMAP server."""

    pattern: re.Pattern
    server: str

    def matches(self, username: str) -> bool:
        return bool(self.pattern.search(username))


def _provider(pattern: str, server: str) -> ProviderPattern:
    return ProviderPattern(re.compile(pattern, re.IGNORECASE), server)


# Ordered, first match wins.
PROVIDER_PATTERNS: tuple[ProviderPattern, ...] = (
    _provider(r"@hotmail", "imap-mail.outlook.com:993"),
    _provider(r"@yahoo", "imap.mail.yahoo.com:993"),
    _provider(r"@gmail", "imap.gmail.com:993"),
    _provider(r"@(outlook|live|msn)\.", "imap-mail.outlook.com:993"),
    _provider(r"@(icloud|me|mac)\.com$", "imap.mail.me.com:993"),
    _provider(r"@aol\.", "imap.aol.com:993"),
    _provider(r"@yandex\.", "imap.yandex.com:993"),
    _provider(r"@gmx\.", "imap.gmx.com:993"),
)


@dataclass
class ResolutionFailure:
    """An account that could not be resolved, and why."""

    source: str
    username: str
    reason: str


@dataclass
class Resolution:
    """Result of a resolution pass."""

    accounts: list[AccountCredential] = field(default_factory=list)
    failures: list[ResolutionFailure] = field(default_factory=list)


def split_host_port(
    address: str,
    default_port: int | None = DEFAULT_IMAP_PORT,
    error: type[Exception] = ResolutionError,
) -> tuple[str, int]:
    """Split ``host:port``; bracketed IPv6 hosts are accepted."""
    address = address.strip()
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port_str = rest[1:] if rest.startswith(":") else ""
    elif address.count(":") == 1:
        host, port_str = address.split(":")
    else:
        host, port_str = address, ""

    if not host:
        raise error(f"Missing host in address: {address!r}")
    if not port_str:
        if default_port is None:
            raise error(f"Missing port in address: {address!r}")
        return host, default_port
    try:
        port = int(port_str)
    except ValueError:
        raise error(f"Invalid port in address: {address!r}") from None
    if not 0 < port < 65536:
        raise error(f"Port out of range in address: {address!r}")
    return host, port


def infer_server(username: str, patterns: Iterable[ProviderPattern] = PROVIDER_PATTERNS) -> str | None:
    """Return the server of the first provider pattern matching the username."""
    for provider in patterns:
        if provider.matches(username):
            return provider.server
    return None


def proxy_from_token(token: str) -> ProxyDescriptor | None:
    """Build a proxy descriptor from a sigil-prefixed flat-file column."""
    if not token:
        return None
    kind = PROXY_SIGILS.get(token[0])
    if kind is None:
        kind, address = ProxyKind.HTTPS, token
    else:
        address = token[1:]
    if not address:
        return None
    return ProxyDescriptor(kind=kind, address=address)


def parse_account_line(line: str, delimiter: str = DEFAULT_DELIMITER, source: str = "") -> AccountCredential | None:
    """Parse one line of the flat accounts file.

    Columns: username, password, [server], [proxy]. With the ``:``
    delimiter host and port of the server and proxy occupy two columns each;
    any other delimiter carries them as a single ``host:port`` token.

    Returns None for lines that do not describe an account.
    """
    if not line:
        return None
    columns = line.split(delimiter)
    if len(columns) < 2:
        return None

    username, password = columns[0], columns[1]
    server: str | None = None
    proxy_token = ""

    i = 2
    if len(columns) > i:
        if delimiter == ":" and len(columns) > i + 1:
            if columns[i]:
                server = f"{columns[i]}:{columns[i + 1]}"
            i += 2
        else:
            server = columns[i] or None
            i += 1

    if len(columns) > i:
        if delimiter == ":" and len(columns) > i + 1:
            if columns[i]:
                proxy_token = f"{columns[i]}:{columns[i + 1]}"
        else:
            proxy_token = columns[i]

    return AccountCredential(
        username=username,
        password=password,
        server=server,
        proxy=proxy_from_token(proxy_token),
        source=source,
    )


def load_accounts_file(accounts_file: AccountsFileConfig) -> list[AccountCredential]:
    """Read all accounts from a flat accounts file."""
    path = Path(accounts_file.path)
    delimiter = accounts_file.delimiter or DEFAULT_DELIMITER

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read accounts file {path}: {e}") from e

    accounts = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        account = parse_account_line(line, delimiter, source=f"{path.name}:{lineno}")
        if account is None:
            if line:
                logger.debug(f"Ignoring line {lineno} of {path.name}: fewer than two columns")
            continue
        accounts.append(account)

    logger.debug(f"Loaded {len(accounts)} account(s) from {path}")
    return accounts


def account_from_config(raw: Mapping[str, Any], source: str = "") -> AccountCredential:
    """Turn an inline account declaration into an AccountCredential."""
    try:
        declared = AccountConfig.model_validate(raw)
    except ValidationError as e:
        raise ResolutionError(f"Invalid account declaration: {e.errors()[0]['msg']}") from e

    kind = ProxyKind.parse(declared.proxy.type)
    proxy = None
    if kind is not ProxyKind.NONE:
        proxy = ProxyDescriptor(
            kind=kind,
            address=declared.proxy.addr,
            username=declared.proxy.auth.user or None,
            password=declared.proxy.auth.password or None,
        )

    return AccountCredential(
        username=declared.username,
        password=declared.password,
        server=declared.imap_addr or None,
        proxy=proxy,
        source=source,
    )


def _with_server(account: AccountCredential) -> AccountCredential:
    if account.server:
        return account
    server = infer_server(account.username)
    if server is None:
        raise ResolutionError(f"No IMAP info for {account.username}: unknown server")
    return AccountCredential(
        username=account.username,
        password=account.password,
        server=server,
        proxy=account.proxy,
        source=account.source,
    )


def resolve_accounts(
    raw_accounts: Iterable[Mapping[str, Any]],
    accounts_file: AccountsFileConfig | None = None,
) -> Resolution:
    """Resolve inline and file accounts into an ordered list of credentials.

    A broken declaration only removes that account from the result; the
    reason is recorded in ``Resolution.failures``. An unreadable accounts
    file raises ConfigError.
    """
    resolution = Resolution()
    candidates: list[tuple[str, str, Any]] = []

    for index, raw in enumerate(raw_accounts):
        source = f"accounts[{index}]"
        username = str(raw.get("username", "")) if isinstance(raw, Mapping) else ""
        candidates.append((source, username, raw))

    if accounts_file is not None and accounts_file.path:
        for account in load_accounts_file(accounts_file):
            candidates.append((account.source, account.username, account))

    for source, username, candidate in candidates:
        try:
            if isinstance(candidate, AccountCredential):
                account = candidate
            elif isinstance(candidate, Mapping):
                account = account_from_config(candidate, source=source)
            else:
                raise ResolutionError(f"Account declaration is not a mapping: {candidate!r}")
            account = _with_server(account)
        except ResolutionError as e:
            logger.warning(json.dumps({
                "event": "resolution_failed",
                "source": source,
                "username": username,
                "error": str(e),
            }))
            resolution.failures.append(ResolutionFailure(source=source, username=username, reason=str(e)))
            continue
        resolution.accounts.append(account)

    logger.info(json.dumps({
        "event": "accounts_resolved",
        "resolved": len(resolution.accounts),
        "failed": len(resolution.failures),
    }))
    return resolution
