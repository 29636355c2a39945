"""Per-account Junk rescue workflow."""

from __future__ import annotations

import json
import logging
import queue
import threading
from contextlib import closing
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from junkrescue.dialer import dialer_for
from junkrescue.errors import MoveError, ProtocolError, ResolutionError, SessionError
from junkrescue.imap_client import IMAPClient
from junkrescue.resolver import AccountCredential, ResolutionFailure, resolve_accounts
from junkrescue.rules_engine import RulesEngine
from junkrescue.structured_logger import StructuredLogger

if TYPE_CHECKING:
    from junkrescue.config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")

_END = object()


class SessionState(str, Enum):
    """Progress of one account through the rescue workflow."""

    RESOLVED = "resolved"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    MAILBOXES_LISTED = "mailboxes_listed"
    JUNK_SELECTED = "junk_selected"
    EVALUATED = "evaluated"
    MOVE_ISSUED = "move_issued"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AccountOutcome:
    """What happened to one account during a run."""

    username: str
    source: str = ""
    state: SessionState = SessionState.RESOLVED
    reason: str | None = None
    failed_in: SessionState | None = None
    examined: int = 0
    moved: list[int] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is SessionState.DONE

    def fail(self, reason: str) -> None:
        self.failed_in = self.state
        self.state = SessionState.FAILED
        self.reason = reason


@dataclass
class RunReport:
    """Outcome of a whole run."""

    outcomes: list[AccountOutcome] = field(default_factory=list)
    resolution_failures: list[ResolutionFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> list[AccountOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[AccountOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def moved_total(self) -> int:
        return sum(len(o.moved) for o in self.outcomes)


def stream_through_queue(produce: Callable[[], Iterable[T]], maxsize: int = 10) -> Iterator[T]:
    """Run ``produce`` on a worker thread and yield its items.

    Items are handed over through a bounded queue so a slow consumer
    throttles the producer. An error raised by the producer is re-raised
    once every item produced before it has been consumed.
    """
    handoff: queue.Queue = queue.Queue(maxsize=maxsize)
    errors: list[Exception] = []

    def worker() -> None:
        try:
            for item in produce():
                handoff.put(item)
        except Exception as e:
            errors.append(e)
        finally:
            handoff.put(_END)

    thread = threading.Thread(target=worker, name="imap-reader", daemon=True)
    thread.start()

    finished = False
    try:
        while True:
            item = handoff.get()
            if item is _END:
                finished = True
                break
            yield item
    finally:
        # Unblock the producer if the consumer stopped early
        while not finished:
            finished = handoff.get() is _END
        thread.join()

    if errors:
        raise errors[0]


class JunkRescuer:
    """Moves legitimate messages from Junk back to the Inbox of every account."""

    def __init__(
        self,
        config: Config,
        client_factory: Callable[..., IMAPClient] = IMAPClient,
        dialer_factory: Callable = dialer_for,
        audit: StructuredLogger | None = None,
    ):
        """Initialize the rescuer.

        Args:
            config: Loaded configuration
            client_factory: Builds an IMAP session from (account, dialer, settings)
            dialer_factory: Builds a dialer from a proxy descriptor
            audit: Audit trail, defaults to the one configured in ``config.logging``
        """
        self.config = config
        self.client_factory = client_factory
        self.dialer_factory = dialer_factory
        self.audit = audit or StructuredLogger(config.logging.audit_file)

    def run_once(self) -> RunReport:
        """Process every configured account once.

        Raises:
            ConfigError: If an allow-rule or the accounts file is unusable
            MoveError: If a move fails and move errors are not isolated
        """
        engine = RulesEngine(self.config.allow_rules)
        resolution = resolve_accounts(self.config.accounts, self.config.accounts_file)

        report = RunReport(resolution_failures=list(resolution.failures))
        for account in resolution.accounts:
            report.outcomes.append(self.process_account(account, engine))

        logger.info(json.dumps({
            "event": "run_complete",
            "accounts": len(report.outcomes),
            "succeeded": len(report.succeeded),
            "failed": len(report.failed) + len(report.resolution_failures),
            "moved": report.moved_total,
        }))
        return report

    def process_account(self, account: AccountCredential, engine: RulesEngine) -> AccountOutcome:
        """Run the rescue workflow for one account.

        Every error except an unisolated MoveError ends up in the returned
        outcome.
        """
        outcome = AccountOutcome(username=account.username, source=account.source, dry_run=self.config.dry_run)
        try:
            self._run_session(account, engine, outcome)
        except MoveError as e:
            self._record_failure(outcome, e)
            if not self.config.imap.isolate_move_errors:
                raise
        except (ResolutionError, SessionError) as e:
            self._record_failure(outcome, e)
        else:
            self._record(outcome)
        return outcome

    def _record_failure(self, outcome: AccountOutcome, error: Exception) -> None:
        outcome.fail(str(error))
        logger.error(json.dumps({
            "event": "account_failed",
            "username": outcome.username,
            "state": outcome.failed_in.value if outcome.failed_in else None,
            "error_type": type(error).__name__,
            "error": str(error),
        }))
        self._record(outcome)

    def _record(self, outcome: AccountOutcome) -> None:
        self.audit.log_account_processed(
            username=outcome.username,
            state=outcome.state.value,
            examined=outcome.examined,
            moved=len(outcome.moved),
            reason=outcome.reason,
            dry_run=outcome.dry_run,
        )

    def _run_session(self, account: AccountCredential, engine: RulesEngine, outcome: AccountOutcome) -> None:
        settings = self.config.imap
        dialer = self.dialer_factory(account.proxy)

        with self.client_factory(account, dialer, settings) as client:
            client.connect()
            outcome.state = SessionState.CONNECTED

            client.login()
            outcome.state = SessionState.AUTHENTICATED

            inbox, junk = self._find_mailboxes(client)
            outcome.state = SessionState.MAILBOXES_LISTED

            count = client.select_folder(junk, readonly=False)
            outcome.state = SessionState.JUNK_SELECTED
            logger.info(json.dumps({"event": "junk_selected", "username": account.username, "folder": junk, "messages": count}))

            if count == 0:
                logger.info(f"Junk folder of {account.username} is empty")
                outcome.fail("empty")
                return

            batch = self._evaluate(client, account, engine, count, outcome)
            outcome.state = SessionState.EVALUATED

            if batch:
                moved = sorted(batch)
                if self.config.dry_run:
                    logger.info(json.dumps({"event": "would_move", "username": account.username, "count": len(moved), "target": inbox}))
                else:
                    client.move(moved, inbox)
                    outcome.state = SessionState.MOVE_ISSUED
                    logger.info(json.dumps({"event": "moved", "username": account.username, "count": len(moved), "target": inbox}))
                outcome.moved = moved

        outcome.state = SessionState.DONE

    def _find_mailboxes(self, client: IMAPClient) -> tuple[str, str]:
        """Return the actual names of the Inbox and Junk mailboxes."""
        inbox_name = self.config.imap.inbox_folder.upper()
        junk_name = self.config.imap.junk_folder.upper()
        inbox = junk = None

        with closing(stream_through_queue(client.iter_mailboxes, self.config.imap.queue_size)) as names:
            for name in names:
                upper = name.upper()
                if upper == inbox_name:
                    inbox = name
                elif upper == junk_name:
                    junk = name

        logger.debug(json.dumps({"event": "mailboxes_listed", "inbox": inbox, "junk": junk}))
        if inbox is None:
            raise ProtocolError(f"No {self.config.imap.inbox_folder} folder found")
        if junk is None:
            raise ProtocolError(f"No {self.config.imap.junk_folder} folder found")
        return inbox, junk

    def _evaluate(
        self,
        client: IMAPClient,
        account: AccountCredential,
        engine: RulesEngine,
        count: int,
        outcome: AccountOutcome,
    ) -> set[int]:
        """Stream the Junk envelopes through the rules and collect rescued messages.

        A fetch error propagates and the partial batch is dropped.
        """
        batch: set[int] = set()
        messages = stream_through_queue(
            lambda: client.iter_envelopes(count, self.config.imap.fetch_batch_size),
            self.config.imap.queue_size,
        )
        with closing(messages):
            for message in messages:
                outcome.examined += 1
                rule = engine.matching_rule(message)
                rescued = rule is not None
                logger.info(json.dumps({
                    "event": "message_rescued" if rescued else "message_skipped",
                    "username": account.username,
                    "seq": message.seq,
                    "from": message.senders,
                    "to": message.recipients,
                    "subject": message.subject,
                    "rule": rule.name if rule else None,
                }))
                self.audit.log_message_decision(
                    username=account.username,
                    seq=message.seq,
                    message_id=message.message_id,
                    senders=message.senders,
                    subject=message.subject,
                    rescued=rescued,
                    rule=rule.name if rule else None,
                )
                if rescued:
                    batch.add(message.seq)
        return batch
