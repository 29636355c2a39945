"""Rules engine deciding which junk messages are legitimate."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from junkrescue.errors import ConfigError

if TYPE_CHECKING:
    from junkrescue.config import AllowRuleConfig
from junkrescue.envelope import MailboxMessage

logger = logging.getLogger(__name__)

# A bad pattern on one of these aborts the run; on the others the
# predicate is dropped.
REQUIRED_FIELDS = ("sender", "recipient")
ADDRESS_FIELDS = ("sender", "recipient", "cc", "bcc")


@dataclass(frozen=True)
class AllowRule:
    """A compiled allow-rule. Absent predicates are None."""

    name: str
    sender: re.Pattern | None = None
    recipient: re.Pattern | None = None
    cc: re.Pattern | None = None
    bcc: re.Pattern | None = None
    subject: re.Pattern | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f) is None for f in (*ADDRESS_FIELDS, "subject"))

    def describe(self) -> str:
        parts = [
            f"{f}={getattr(self, f).pattern!r}"
            for f in (*ADDRESS_FIELDS, "subject")
            if getattr(self, f) is not None
        ]
        return ", ".join(parts)


def compile_rule(spec: AllowRuleConfig, index: int = 0) -> AllowRule | None:
    """Compile one declarative rule.

    Returns None if the rule ends up without any predicate.

    Raises:
        ConfigError: If a sender or recipient pattern is invalid
    """
    name = spec.name or f"rule-{index + 1}"
    patterns: dict[str, re.Pattern] = {}

    for field_name in (*ADDRESS_FIELDS, "subject"):
        source = getattr(spec, field_name)
        if not source:
            continue
        try:
            patterns[field_name] = re.compile(source)
        except re.error as e:
            if field_name in REQUIRED_FIELDS:
                raise ConfigError(f"Invalid {field_name} regex in rule {name}: {source} - {e}") from e
            logger.error(f"Invalid {field_name} regex in rule {name}: {source} - {e}")

    rule = AllowRule(name=name, **patterns)
    if rule.is_empty():
        logger.warning(f"Rule {name} has no usable pattern, ignoring it")
        return None
    return rule


def compile_rules(specs: Iterable[AllowRuleConfig]) -> tuple[AllowRule, ...]:
    """Compile all declarative rules, keeping their order."""
    rules = []
    for index, spec in enumerate(specs):
        rule = compile_rule(spec, index)
        if rule is not None:
            rules.append(rule)
    logger.debug(f"Compiled {len(rules)} allow rule(s)")
    return tuple(rules)


def _any_address_matches(pattern: re.Pattern, addresses: Sequence[str]) -> bool:
    return any(pattern.search(address) for address in addresses)


def rule_rescues(rule: AllowRule, message: MailboxMessage) -> bool:
    """Evaluate a single rule against a message.

    ``passed`` holds the result of the last predicate evaluated while
    ``blocked`` latches on the first predicate that fails, so a later
    predicate cannot undo an earlier failure.
    """
    passed = False
    blocked = False

    for field_name, addresses in (
        ("sender", message.senders),
        ("recipient", message.recipients),
        ("cc", message.cc),
        ("bcc", message.bcc),
    ):
        pattern = getattr(rule, field_name)
        if pattern is None:
            continue
        passed = _any_address_matches(pattern, addresses)
        if not passed:
            blocked = True

    if rule.subject is not None:
        passed = bool(rule.subject.search(message.subject))
        if not passed:
            blocked = True

    return passed and not blocked


def evaluate(rules: Iterable[AllowRule], message: MailboxMessage) -> bool:
    """Return True if any rule rescues the message."""
    return any(rule_rescues(rule, message) for rule in rules)


class RulesEngine:
    """Compiled allow-rules shared read-only by every account."""

    def __init__(self, specs: Iterable[AllowRuleConfig]):
        """Compile the rules; raises ConfigError on a bad required pattern."""
        self.rules = compile_rules(specs)

    def __len__(self) -> int:
        return len(self.rules)

    def matching_rule(self, message: MailboxMessage) -> AllowRule | None:
        """Return the first rule that rescues the message, if any."""
        for rule in self.rules:
            if rule_rescues(rule, message):
                logger.debug(f"Rule '{rule.name}' rescues message #{message.seq}")
                return rule
        return None

    def evaluate(self, message: MailboxMessage) -> bool:
        """Return True if the message should go back to the Inbox."""
        return self.matching_rule(message) is not None
