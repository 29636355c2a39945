"""Tests for account resolution."""

import pytest

from junkrescue.config import AccountsFileConfig
from junkrescue.errors import ConfigError, ProxyConfigError, ResolutionError
from junkrescue.resolver import (
    AccountCredential,
    ProxyDescriptor,
    ProxyKind,
    infer_server,
    parse_account_line,
    proxy_from_token,
    resolve_accounts,
    split_host_port,
)


class TestParseAccountLine:
    """Tests for the flat accounts file grammar."""

    def test_full_line_default_delimiter(self):
        account = parse_account_line("user:pass:host:993:socksaddr:1080")
        assert account.username == "user"
        assert account.password == "pass"
        assert account.server == "host:993"
        assert account.proxy.address == "socksaddr:1080"
        assert account.proxy.kind is ProxyKind.HTTPS

    def test_credentials_only(self):
        account = parse_account_line("user@gmail.com:pass")
        assert account.server is None
        assert account.proxy is None

    def test_fewer_than_two_columns_ignored(self):
        assert parse_account_line("lonely") is None
        assert parse_account_line("") is None

    def test_empty_host_leaves_server_unset(self):
        account = parse_account_line("user@gmail.com:pass::993:*10.0.0.1:1080")
        assert account.server is None
        assert account.proxy.kind is ProxyKind.SOCKS5
        assert account.proxy.address == "10.0.0.1:1080"

    def test_other_delimiter_uses_combined_tokens(self):
        account = parse_account_line("user;pass;mail.example.com:143;+10.0.0.1:1080", delimiter=";")
        assert account.server == "mail.example.com:143"
        assert account.proxy.kind is ProxyKind.SOCKS4
        assert account.proxy.address == "10.0.0.1:1080"

    def test_other_delimiter_server_only(self):
        account = parse_account_line("user|pass|mail.example.com:993", delimiter="|")
        assert account.server == "mail.example.com:993"
        assert account.proxy is None

    def test_dangling_host_column(self):
        # A single trailing column with ":" is taken as the whole server token
        account = parse_account_line("user:pass:mail.example.com")
        assert account.server == "mail.example.com"

    def test_empty_proxy_after_sigil_is_no_proxy(self):
        account = parse_account_line("user;pass;host:993;*", delimiter=";")
        assert account.proxy is None


class TestProxyToken:
    """Tests for proxy sigils."""

    @pytest.mark.parametrize(
        "token,kind",
        [
            ("*10.0.0.1:1080", ProxyKind.SOCKS5),
            ("+10.0.0.1:1080", ProxyKind.SOCKS4),
            ("#10.0.0.1:1080", ProxyKind.HTTPS),
            ("10.0.0.1:1080", ProxyKind.HTTPS),
        ],
    )
    def test_sigils(self, token, kind):
        proxy = proxy_from_token(token)
        assert proxy.kind is kind
        assert proxy.address == "10.0.0.1:1080"

    def test_empty_token(self):
        assert proxy_from_token("") is None
        assert proxy_from_token("#") is None


class TestProxyDescriptor:
    """Tests for ProxyDescriptor."""

    def test_address_required(self):
        with pytest.raises(ProxyConfigError):
            ProxyDescriptor(kind=ProxyKind.SOCKS5)

    def test_no_proxy_needs_no_address(self):
        assert ProxyDescriptor(kind=ProxyKind.NONE).address == ""

    def test_host_port(self):
        proxy = ProxyDescriptor(kind=ProxyKind.SOCKS5, address="proxy.local:1080")
        assert proxy.host_port() == ("proxy.local", 1080)

    def test_host_port_requires_port(self):
        proxy = ProxyDescriptor(kind=ProxyKind.HTTPS, address="proxy.local")
        with pytest.raises(ProxyConfigError):
            proxy.host_port()

    def test_parse_kind(self):
        assert ProxyKind.parse("SOCKS5") is ProxyKind.SOCKS5
        assert ProxyKind.parse("") is ProxyKind.NONE
        with pytest.raises(ProxyConfigError):
            ProxyKind.parse("socks6")


class TestServerInference:
    """Tests for provider patterns."""

    def test_gmail(self):
        assert infer_server("someone@gmail.com") == "imap.gmail.com:993"

    def test_case_insensitive(self):
        assert infer_server("Someone@HOTMAIL.com") == "imap-mail.outlook.com:993"
        assert infer_server("someone@Yahoo.co.uk") == "imap.mail.yahoo.com:993"

    def test_unknown(self):
        assert infer_server("someone@example.org") is None

    def test_split_host_port(self):
        assert split_host_port("imap.gmail.com:993") == ("imap.gmail.com", 993)
        assert split_host_port("imap.example.com") == ("imap.example.com", 993)
        assert split_host_port("[::1]:143") == ("::1", 143)
        with pytest.raises(ResolutionError):
            split_host_port("host:notaport")


class TestResolveAccounts:
    """Tests for a full resolution pass."""

    def test_inline_account_with_proxy_auth(self):
        resolution = resolve_accounts([
            {
                "username": "someone@gmail.com",
                "password": "secret",
                "proxy": {
                    "type": "socks5",
                    "addr": "10.0.0.1:1080",
                    "auth": {"user": "pu", "password": "pp"},
                },
            }
        ])
        assert resolution.failures == []
        account = resolution.accounts[0]
        assert account.server == "imap.gmail.com:993"
        assert account.proxy.kind is ProxyKind.SOCKS5
        assert account.proxy.username == "pu"
        assert account.proxy.password == "pp"
        assert account.source == "accounts[0]"

    def test_inline_account_explicit_server(self):
        resolution = resolve_accounts([
            {"username": "me@example.org", "password": "x", "imapaddr": "mail.example.org:993"}
        ])
        assert resolution.accounts[0].server == "mail.example.org:993"
        assert resolution.accounts[0].proxy is None

    def test_invalid_proxy_type_isolated(self):
        resolution = resolve_accounts([
            {"username": "one@gmail.com", "password": "x"},
            {"username": "two@gmail.com", "password": "x", "proxy": {"type": "socks6", "addr": "h:1"}},
            {"username": "three@gmail.com", "password": "x"},
        ])
        assert [a.username for a in resolution.accounts] == ["one@gmail.com", "three@gmail.com"]
        assert len(resolution.failures) == 1
        assert resolution.failures[0].username == "two@gmail.com"
        assert "socks6" in resolution.failures[0].reason

    def test_unknown_server_isolated(self):
        resolution = resolve_accounts([
            {"username": "someone@example.org", "password": "x"},
            {"username": "someone@gmail.com", "password": "x"},
        ])
        assert [a.username for a in resolution.accounts] == ["someone@gmail.com"]
        assert "unknown server" in resolution.failures[0].reason

    def test_malformed_declarations_isolated(self):
        resolution = resolve_accounts([
            {"password": "missing-username"},
            "not a mapping",
            {"username": "ok@gmail.com", "password": "x"},
        ])
        assert [a.username for a in resolution.accounts] == ["ok@gmail.com"]
        assert len(resolution.failures) == 2

    def test_accounts_file_after_inline_accounts(self, tmp_path):
        path = tmp_path / "accounts.txt"
        path.write_text(
            "file1@gmail.com:pw1\n"
            "\n"
            "junk-line\n"
            "file2@example.org:pw2:mail.example.org:993:*10.0.0.1:1080\n"
            "nobody@example.org:pw3\n"
        )
        resolution = resolve_accounts(
            [{"username": "inline@yahoo.com", "password": "x"}],
            AccountsFileConfig(path=str(path)),
        )
        assert [a.username for a in resolution.accounts] == [
            "inline@yahoo.com",
            "file1@gmail.com",
            "file2@example.org",
        ]
        file2 = resolution.accounts[2]
        assert file2.server == "mail.example.org:993"
        assert file2.proxy.kind is ProxyKind.SOCKS5
        assert file2.source == "accounts.txt:4"
        assert len(resolution.failures) == 1
        assert resolution.failures[0].source == "accounts.txt:5"

    def test_empty_delimiter_defaults_to_colon(self, tmp_path):
        path = tmp_path / "accounts.txt"
        path.write_text("a@gmail.com:pw:imap.gmail.com:993\n")
        resolution = resolve_accounts([], AccountsFileConfig(path=str(path), delimiter=""))
        assert resolution.accounts[0].server == "imap.gmail.com:993"

    def test_unreadable_accounts_file(self, tmp_path):
        with pytest.raises(ConfigError):
            resolve_accounts([], AccountsFileConfig(path=str(tmp_path / "missing.txt")))

    def test_credential_server_host_port(self):
        account = AccountCredential(username="u", password="secret-pw", server="imap.gmail.com:993")
        assert account.server_host_port() == ("imap.gmail.com", 993)
        assert "secret-pw" not in repr(account)
