"""Command-line interface for junkrescue."""

from __future__ import annotations

import logging
import signal
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import click
import yaml
from croniter import croniter
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from junkrescue import __version__
from junkrescue.config import Config, load_config
from junkrescue.errors import ConfigError, MoveError
from junkrescue.orchestrator import JunkRescuer, RunReport
from junkrescue.resolver import resolve_accounts
from junkrescue.rules_engine import RulesEngine
from junkrescue.structured_logger import StructuredLogger

console = Console(width=200, soft_wrap=False)
logger = logging.getLogger("junkrescue")

DEFAULT_CONFIG = "junkrescue.yml"


def setup_logging(level: str, log_file: str | None = None) -> None:
    """Configure logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    ]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )


def _print_report(report: RunReport) -> None:
    """Print a per-account summary table to the console."""
    table = Table(title="Junk Rescue Summary")
    table.add_column("Account", style="cyan")
    table.add_column("Source", style="dim")
    table.add_column("State")
    table.add_column("Examined", justify="right")
    table.add_column("Moved", justify="right", style="green")
    table.add_column("Reason")

    for outcome in report.outcomes:
        state = "[green]done[/green]" if outcome.succeeded else f"[red]failed[/red] ({outcome.failed_in.value})"
        moved = str(len(outcome.moved))
        if outcome.dry_run and outcome.moved:
            moved += " (dry-run)"
        table.add_row(
            outcome.username,
            outcome.source,
            state,
            str(outcome.examined),
            moved,
            escape(outcome.reason or ""),
        )
    for failure in report.resolution_failures:
        table.add_row(failure.username or "?", failure.source, "[red]unresolved[/red]", "-", "-", escape(failure.reason))

    console.print(table)


def run_once(cfg: Config) -> RunReport:
    """Run one pass over all accounts and print the summary."""
    rescuer = JunkRescuer(cfg)
    report = rescuer.run_once()
    _print_report(report)
    return report


def run_tick(config_path: str) -> RunReport | None:
    """Reload the configuration and run one scheduled pass.

    Failures are logged so the schedule keeps going.
    """
    try:
        cfg = load_config(config_path)
        return run_once(cfg)
    except (FileNotFoundError, yaml.YAMLError, ValidationError, ConfigError, MoveError) as e:
        logger.error(f"Run failed: {e}")
        return None


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """junkrescue - move legitimate mail out of IMAP Junk folders."""
    pass


@cli.command()
@click.option(
    "--config",
    "-c",
    default=DEFAULT_CONFIG,
    show_default=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML file",
)
@click.option("--dry-run", is_flag=True, help="Evaluate rules but do not move anything")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def run(config: str, dry_run: bool, verbose: bool) -> None:
    """Process every account once."""
    try:
        cfg = load_config(config)
        if dry_run:
            cfg.dry_run = True

        log_level = "DEBUG" if verbose else cfg.logging.level
        setup_logging(log_level, cfg.logging.log_file)

        console.print(f"[bold blue]junkrescue v{__version__}[/bold blue]")
        console.print(f"Configuration: {config}")
        if cfg.dry_run:
            console.print("[yellow]DRY-RUN MODE: messages will NOT be moved[/yellow]")

        run_once(cfg)

    except (FileNotFoundError, ConfigError, MoveError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    "-c",
    default=DEFAULT_CONFIG,
    show_default=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def watch(config: str, verbose: bool) -> None:
    """Run on the schedule given by the `cron` setting.

    The configuration is reloaded before every run. Without a `cron`
    setting the accounts are processed once.
    """
    try:
        cfg = load_config(config)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    setup_logging("DEBUG" if verbose else cfg.logging.level, cfg.logging.log_file)
    console.print(f"[bold blue]junkrescue v{__version__} - Watch Mode[/bold blue]")

    if not cfg.cron:
        try:
            run_once(cfg)
        except (ConfigError, MoveError) as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            sys.exit(1)
        return

    if not croniter.is_valid(cfg.cron):
        console.print(f"[red]Error: invalid cron expression: {cfg.cron}[/red]")
        sys.exit(1)

    audit = StructuredLogger(cfg.logging.audit_file)
    audit.log_startup({"cron": cfg.cron, "dry_run": cfg.dry_run, "version": __version__})

    shutdown_requested = False

    def signal_handler(signum, frame):
        nonlocal shutdown_requested
        console.print("\n[yellow]Shutdown requested...[/yellow]")
        shutdown_requested = True

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"cron: {cfg.cron}")
    console.print("Press CTRL+C to stop\n")
    schedule = croniter(cfg.cron, datetime.now(timezone.utc))

    while not shutdown_requested:
        next_run = schedule.get_next(datetime)
        logger.debug(f"Next run at {next_run.isoformat()}")
        while not shutdown_requested and datetime.now(timezone.utc) < next_run:
            time.sleep(1)
        if shutdown_requested:
            break

        run_tick(config)

    audit.log_shutdown()
    console.print("\n[green]Watch mode stopped[/green]")


@cli.command()
@click.option(
    "--config",
    "-c",
    default=DEFAULT_CONFIG,
    show_default=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML file",
)
def check(config: str) -> None:
    """Check configuration, rules and accounts without connecting."""
    try:
        cfg = load_config(config)
        console.print("[green][OK] Configuration valid[/green]")

        engine = RulesEngine(cfg.allow_rules)
        console.print(f"\n{len(engine)} allow rule(s) compiled")
        for rule in engine.rules:
            console.print(f"  - {escape(rule.name)}: {escape(rule.describe())}")

        if cfg.cron:
            status = "[green][OK][/green]" if croniter.is_valid(cfg.cron) else "[red]invalid[/red]"
            console.print(f"\nSchedule: {cfg.cron} {status}")

        resolution = resolve_accounts(cfg.accounts, cfg.accounts_file)
        table = Table(title="Accounts")
        table.add_column("Account", style="cyan")
        table.add_column("Source", style="dim")
        table.add_column("Server")
        table.add_column("Proxy")
        for account in resolution.accounts:
            proxy = f"{account.proxy.kind.value} {account.proxy.address}" if account.proxy else "direct"
            table.add_row(account.username, account.source, account.server or "-", proxy)
        for failure in resolution.failures:
            table.add_row(failure.username or "?", failure.source, "[red]unresolved[/red]", escape(failure.reason))
        console.print(table)

        if resolution.failures:
            sys.exit(1)

    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("output", type=click.Path())
def init_config(output: str) -> None:
    """Generate a sample configuration file."""
    sample_config = """# junkrescue configuration

# Cron expression for `junkrescue watch`; leave empty to run once
cron: "*/15 * * * *"

# Optional flat accounts file, one account per line:
#   username:password[:host:port[:proxyhost:proxyport]]
# Prefix the proxy host with # (HTTPS), + (SOCKS4) or * (SOCKS5).
# With another delimiter, server and proxy are single host:port columns.
# accounts_file:
#   path: accounts.txt
#   delimiter: ":"

accounts:
  - username: someone@gmail.com
    password: app-password
    # imap_addr: imap.gmail.com:993   # inferred for well-known providers
    # proxy:
    #   type: socks5                  # https, socks4 or socks5
    #   addr: 10.0.0.1:1080
    #   auth:
    #     user: proxyuser
    #     password: proxypass

# A message goes back to the Inbox when every pattern of at least one rule
# matches. Patterns are Python regular expressions.
allow_rules:
  - name: colleagues
    from: "@example\\\\.com$"
  - name: invoices
    from: "^billing@"
    subject: "(?i)invoice"

imap:
  timeout: 30
  verify_ssl: true
  inbox_folder: INBOX
  junk_folder: Junk
  isolate_move_errors: false

logging:
  level: INFO
  # log_file: /var/log/junkrescue.log
  # audit_file: junkrescue-audit.jsonl

dry_run: false
"""
    Path(output).write_text(sample_config)
    console.print(f"[green]Sample configuration written to {output}[/green]")
    console.print("\nNext steps:")
    console.print("1. Add your accounts and allow rules")
    console.print("2. Run: junkrescue check --config " + output)
    console.print("3. Run: junkrescue run --dry-run --config " + output)
    console.print("4. Run: junkrescue watch --config " + output)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
