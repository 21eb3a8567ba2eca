"""
Error types raised by the harness.

Connection and statement failures are scenario-local: the runner turns them
into Error verdicts. Only a failed connection check before the first scenario
ends the whole run.
"""


class HarnessError(Exception):
    pass


class ConfigError(HarnessError):
    """Unreadable config file, missing keys, or a bad expectation line."""


class EngineConnectionError(HarnessError, ConnectionError):
    """The target PostgreSQL server could not be reached."""


class StatementError(HarnessError):
    """A setup statement or the explained query failed on the server."""

    def __init__(self, statement, message):
        self.statement = statement
        self.message = (message or "").strip()
        super().__init__(f"{self.message} (statement: {_shorten(statement)})")


class ScenarioTimeout(HarnessError, TimeoutError):
    """The scenario ran past its time budget."""

    def __init__(self, statement=None, timeout=None):
        self.statement = statement
        self.timeout = timeout
        super().__init__("timeout")


def _shorten(statement, limit=80):
    text = " ".join((statement or "").split())
    return text if len(text) <= limit else text[:limit - 3] + "..."
