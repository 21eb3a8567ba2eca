"""
Session Runner: one fresh PostgreSQL session per scenario.

A new connection starts from the server's default parameters, so a
`SET work_mem = '1MB'` in one scenario can never leak into the next. RESET ALL
runs first anyway in case the role or database carries its own defaults that
were changed with ALTER ... SET after the connection pool warmed up.

Everything a scenario does happens inside one transaction that is never
committed: closing the connection rolls it back, so EXPLAIN ANALYZE on an
UPDATE leaves the table as it was.
"""

import logging
import math
import re
import threading
import time
from contextlib import contextmanager
from typing import Optional

import psycopg2
from psycopg2 import errors

from .config import PostgresConfig
from .errors import EngineConnectionError, ScenarioTimeout, StatementError

logger = logging.getLogger(__name__)

EXPLAIN_OPTIONS = "ANALYZE, COSTS, BUFFERS, FORMAT TEXT"
_ALREADY_EXPLAIN = re.compile(r"^\s*explain\b", re.IGNORECASE)


def explain_sql(query: str, options: str = EXPLAIN_OPTIONS) -> str:
    if _ALREADY_EXPLAIN.match(query):
        return query
    return f"EXPLAIN ({options}) {query}"


class SessionRunner:
    """Runs scenarios against the target server through psycopg2."""

    def __init__(self, config: PostgresConfig, explain_options: str = EXPLAIN_OPTIONS):
        self.config = config
        self.explain_options = explain_options

    def connect(self, deadline: Optional[float] = None, timeout: Optional[float] = None):
        kwargs = self.config.connect_kwargs()
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ScenarioTimeout(None, timeout)
            # connect_timeout is whole seconds, 0 means wait forever
            budget = max(1, math.ceil(remaining))
            kwargs['connect_timeout'] = min(kwargs['connect_timeout'] or budget, budget)
        try:
            return psycopg2.connect(**kwargs)
        except psycopg2.OperationalError as exc:
            if deadline is not None and time.monotonic() >= deadline:
                raise ScenarioTimeout(None, timeout) from exc
            raise EngineConnectionError(
                "Cannot connect to %s:%s/%s as %s: %s"
                % (self.config.host, self.config.port, self.config.database,
                   self.config.user, str(exc).strip())
            ) from exc

    @contextmanager
    def session(self, deadline: Optional[float] = None, timeout: Optional[float] = None):
        conn = self.connect(deadline, timeout)
        watchdog = _arm_watchdog(conn, deadline)
        try:
            yield conn
        finally:
            if watchdog is not None:
                watchdog.cancel()
            conn.close()

    def check_connection(self) -> str:
        """SELECT version() on a throwaway session; returns the version string."""
        with self.session() as conn:
            cur = conn.cursor()
            try:
                cur.execute("SELECT version()")
                row = cur.fetchone()
            except psycopg2.Error as exc:
                raise EngineConnectionError(
                    "Connected but SELECT version() failed: %s" % _engine_message(exc)
                ) from exc
            finally:
                cur.close()
        return row[0] if row else ""

    def run(self, scenario, timeout: Optional[float] = None) -> str:
        """
        Run setup statements then the explained query; return the plan text.

        Raises EngineConnectionError, StatementError or ScenarioTimeout. The
        connection is closed on every path.

        With a timeout the budget covers the whole scenario: connecting,
        statement_timeout on the server, and a client-side cancel at the
        deadline for when the server does not answer.
        """
        deadline = time.monotonic() + timeout if timeout else None
        logger.info("Running scenario %s", scenario.name)
        with self.session(deadline, timeout) as conn:
            cur = conn.cursor()
            try:
                self._execute(conn, cur, "RESET ALL", deadline, timeout)
                for statement in scenario.setup_statements:
                    self._execute(conn, cur, statement, deadline, timeout)
                self._execute(
                    conn, cur, explain_sql(scenario.query, self.explain_options), deadline, timeout
                )
                rows = cur.fetchall() if cur.description else []
            finally:
                cur.close()
        return "\n".join(str(row[0]) for row in rows)

    def _execute(self, conn, cur, statement, deadline, timeout):
        logger.debug("SQL: %s", statement)
        try:
            if deadline is not None:
                remaining_ms = int((deadline - time.monotonic()) * 1000)
                if remaining_ms <= 0:
                    raise ScenarioTimeout(statement, timeout)
                # the remaining budget, not the full timeout, bounds each statement
                cur.execute("SET statement_timeout = %s", (remaining_ms,))
            cur.execute(statement)
        except errors.QueryCanceled as exc:
            if deadline is not None:
                raise ScenarioTimeout(statement, timeout) from exc
            raise StatementError(statement, _engine_message(exc)) from exc
        except psycopg2.Error as exc:
            if deadline is not None and time.monotonic() >= deadline:
                raise ScenarioTimeout(statement, timeout) from exc
            if conn.closed:
                raise EngineConnectionError(
                    "Lost connection during scenario: %s" % _engine_message(exc)
                ) from exc
            raise StatementError(statement, _engine_message(exc)) from exc


def _arm_watchdog(conn, deadline: Optional[float]) -> Optional[threading.Timer]:
    """Cancel the running statement from the client once the deadline passes."""
    if deadline is None:
        return None
    timer = threading.Timer(max(deadline - time.monotonic(), 0), _cancel, args=(conn,))
    timer.daemon = True
    timer.start()
    return timer


def _cancel(conn):
    logger.debug("Scenario deadline reached, cancelling the running statement")
    try:
        conn.cancel()
    except psycopg2.Error as exc:
        logger.warning("Cancel request failed: %s", _engine_message(exc))


def _engine_message(exc) -> str:
    return (getattr(exc, "pgerror", None) or str(exc)).strip()
