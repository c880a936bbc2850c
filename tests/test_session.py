"""
Unit tests for session module.

The DB-API connection is a MagicMock; the catalog is in-memory.
"""

from unittest.mock import MagicMock, Mock

import pytest

from jitstats.config import InterceptionPoint, JitStatsConfig
from jitstats.errors import UnexpectedRelationKind
from jitstats.hooks import install_statistics_hook
from jitstats.query_tree import CommandType
from jitstats.relations import RelationKind
from jitstats.session import InterceptingSession


@pytest.fixture
def connection():
    return MagicMock()


def executed(connection):
    """Statements that reached the database cursor."""
    cursor = connection.cursor.return_value
    return [c.args for c in cursor.execute.call_args_list]


class TestExecute:
    """Tests for statements going through the session."""

    def test_statement_reaches_database_unchanged(self, t41_t42, connection):
        session = InterceptingSession(connection, t41_t42)
        install_statistics_hook(session)

        cursor = session.execute("select * from t41 where x1 = %s", (5,))

        assert cursor is connection.cursor.return_value
        assert executed(connection) == [("select * from t41 where x1 = %s", (5,))]
        assert [r.name for r in t41_t42.maintenance_log] == ["t41"]

    def test_no_hook_no_analysis(self, t41_t42, connection):
        session = InterceptingSession(connection, t41_t42)
        session.analyze = Mock()

        session.execute("select * from t41")

        session.analyze.assert_not_called()
        assert t41_t42.maintenance_log == []

    def test_post_parse_per_statement(self, t41_t42, connection):
        session = InterceptingSession(connection, t41_t42)
        commands = []
        session.post_parse_analyze_hook = lambda query: commands.append(query.command)

        session.execute("select * from t41; create table t9 (x int)")

        assert commands == [CommandType.SELECT, CommandType.UTILITY]

    def test_executor_start_skips_utility(self, t41_t42, connection):
        """Test utility statements do not pass the executor-start point."""
        config = JitStatsConfig(interception_point=InterceptionPoint.EXECUTOR_START)
        session = InterceptingSession(connection, t41_t42, config=config)
        hook = install_statistics_hook(session)

        session.execute("create table t9 (x int)")

        assert hook.last_result is None
        assert len(executed(connection)) == 1

        session.execute("select * from t42")
        assert [r.name for r in hook.last_result.maintained] == ["t42"]

    def test_executor_start_runs_before_execution(self, t41_t42, connection):
        config = JitStatsConfig(interception_point=InterceptionPoint.EXECUTOR_START)
        session = InterceptingSession(connection, t41_t42, config=config)
        install_statistics_hook(session)
        order = []
        t41_t42.on_maintenance = lambda record: order.append(("analyze", record.name))
        connection.cursor.return_value.execute.side_effect = (
            lambda sql, params: order.append(("execute", sql))
        )

        session.execute("select * from t41")

        assert order == [("analyze", "t41"), ("execute", "select * from t41")]

    def test_unparseable_statement_forwarded(self, t41_t42, connection):
        """Test text the parser rejects still goes to the database."""
        session = InterceptingSession(connection, t41_t42)
        hook = install_statistics_hook(session)

        session.execute("select * from (")

        assert executed(connection) == [("select * from (", None)]
        assert hook.last_result is None

    def test_untokenizable_statement_forwarded(self, t41_t42, connection):
        """Test an unterminated string literal still goes to the database."""
        session = InterceptingSession(connection, t41_t42)
        hook = install_statistics_hook(session)

        session.execute("select 'abc from t41", (1,))

        assert executed(connection) == [("select 'abc from t41", (1,))]
        assert hook.last_result is None
        assert t41_t42.maintenance_log == []

    def test_disabled_session(self, t41_t42, connection):
        session = InterceptingSession(connection, t41_t42, config=JitStatsConfig(enabled=False))
        install_statistics_hook(session)

        session.execute("select * from t41")

        assert t41_t42.maintenance_log == []
        assert len(executed(connection)) == 1

    def test_error_aborts_statement(self, catalog, connection):
        catalog.add_relation("ft", RelationKind.OTHER)
        session = InterceptingSession(connection, catalog)
        install_statistics_hook(session)

        with pytest.raises(UnexpectedRelationKind):
            session.execute("select * from ft")

        assert executed(connection) == []
        assert not session.guard.active

    def test_error_warns_and_statement_runs(self, catalog, connection):
        catalog.add_relation("ft", RelationKind.OTHER)
        session = InterceptingSession(connection, catalog, config=JitStatsConfig(on_error="warn"))
        install_statistics_hook(session)

        session.execute("select * from ft")

        assert executed(connection) == [("select * from ft", None)]


class TestReentrancy:
    """Tests for statements issued while an analysis pass is running."""

    def test_nested_statement_not_analyzed(self, t41_t42, connection):
        """Test a query issued during maintenance does not start another pass."""
        session = InterceptingSession(connection, t41_t42)
        install_statistics_hook(session)
        t41_t42.on_maintenance = lambda record: session.execute("select * from t42")

        session.execute("select * from t41")

        assert session.guard.entered_count == 1
        assert [r.name for r in t41_t42.maintenance_log] == ["t41"]
        assert [args[0] for args in executed(connection)] == [
            "select * from t42",
            "select * from t41",
        ]

    def test_guard_is_per_session(self, t41_t42):
        first = InterceptingSession(MagicMock(), t41_t42)
        second = InterceptingSession(MagicMock(), t41_t42)
        assert first.guard is not second.guard


class TestLifecycle:
    def test_context_manager_closes(self, t41_t42, connection):
        with InterceptingSession(connection, t41_t42):
            pass
        connection.close.assert_called_once_with()

    def test_analyze(self, t41_t42, connection):
        session = InterceptingSession(connection, t41_t42)

        queries = session.analyze("select * from t41; select * from t42")

        assert len(queries) == 2
        assert session.analyze("select * from (") == []
        assert session.analyze("select 'abc from t41") == []
