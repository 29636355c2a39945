"""Exception hierarchy for junkrescue.

Run-fatal errors (ConfigError, MoveError) propagate to the caller of a run.
Everything else is scoped to a single account and is recovered by the
orchestrator.
"""


class JunkRescueError(Exception):
    """Base class for all junkrescue errors."""


class ConfigError(JunkRescueError):
    """Configuration cannot be used at all (bad rule pattern, unreadable accounts file)."""


class ResolutionError(JunkRescueError):
    """An account declaration could not be turned into connection parameters."""


class ProxyConfigError(ResolutionError):
    """A proxy descriptor could not be turned into a dialer."""


class SessionError(JunkRescueError):
    """An IMAP session step failed for one account."""


class ImapConnectionError(SessionError):
    """Could not open the TLS stream to the IMAP server."""


class AuthError(SessionError):
    """The server rejected the account credentials."""


class ProtocolError(SessionError):
    """LIST, SELECT or FETCH failed or returned something unparseable."""


class MoveError(JunkRescueError):
    """Moving rescued messages back to the Inbox failed."""
