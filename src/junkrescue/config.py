"""Configuration management for junkrescue."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class ProxyAuth(BaseModel):
    """Credentials for an authenticating proxy."""

    user: str = ""
    password: str = Field(default="", repr=False)


class ProxyConfig(BaseModel):
    """Proxy declaration of an inline account.

    The type is kept as a plain string so that an unknown value fails only
    the account that declares it, not the whole configuration.
    """

    type: str = ""
    addr: str = ""
    auth: ProxyAuth = Field(default_factory=ProxyAuth)


class AccountConfig(BaseModel):
    """Inline account declaration."""

    model_config = ConfigDict(populate_by_name=True)

    username: str
    password: str = Field(default="", repr=False)
    imap_addr: str = Field(default="", alias="imapaddr")
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)


class AccountsFileConfig(BaseModel):
    """Flat accounts file, one account per line."""

    path: str = ""
    delimiter: str = ":"


class AllowRuleConfig(BaseModel):
    """Declarative allow-rule: up to five regex patterns, empty means unset."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    sender: str = Field(default="", alias="from")
    recipient: str = Field(default="", alias="to")
    cc: str = ""
    bcc: str = ""
    subject: str = ""


class ImapSettings(BaseModel):
    """Session settings shared by all accounts."""

    timeout: int = 30
    verify_ssl: bool = True
    inbox_folder: str = "INBOX"
    junk_folder: str = "Junk"
    queue_size: int = Field(
        default=10,
        ge=1,
        description="Depth of the handoff queue between the IMAP reader and the evaluator",
    )
    fetch_batch_size: int = Field(default=100, ge=1)
    isolate_move_errors: bool = Field(
        default=False,
        description="Treat a failed MOVE as an account failure instead of aborting the run",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_file: str | None = None
    audit_file: str | None = None


class Config(BaseModel):
    """Main configuration."""

    model_config = ConfigDict(populate_by_name=True)

    cron: str = ""
    accounts_file: AccountsFileConfig | None = Field(default=None, alias="accountsfile")
    # Validated one account at a time by the resolver.
    accounts: list[Any] = Field(default_factory=list)
    allow_rules: list[AllowRuleConfig] = Field(default_factory=list, alias="notjunkrules")
    imap: ImapSettings = Field(default_factory=lambda: ImapSettings())
    logging: LoggingConfig = Field(default_factory=lambda: LoggingConfig())
    dry_run: bool = False


def load_config(config_path: str | Path) -> Config:
    """Load configuration from YAML file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return Config(**(data or {}))
