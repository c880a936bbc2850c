"""
Unit tests for coordinator module.
"""

from unittest.mock import Mock

import pytest

from jitstats.config import JitStatsConfig
from jitstats.coordinator import StatisticsCoordinator, is_authorized
from jitstats.errors import MaintenanceFailure, RelationNotFound, UnexpectedRelationKind
from jitstats.guard import ReentrancyGuard
from jitstats.memory_catalog import InMemoryCatalog
from jitstats.query_tree import Query, RangeTblEntry, RteKind
from jitstats.relations import RelationKind, SessionUser
from jitstats.view_resolver import ViewDependencyResolver


def names(records):
    return [r.name for r in records]


class TestIsAuthorized:
    def test_owner(self):
        assert is_authorized(SessionUser("alice"), "alice")

    def test_superuser(self):
        assert is_authorized(SessionUser("postgres", superuser=True), "alice")

    def test_other_user(self):
        assert not is_authorized(SessionUser("bob"), "alice")


class TestRun:
    """End-to-end passes over analyzed SQL."""

    def test_scalar_subquery_tables_analyzed(self, t41_t42, analyze):
        """Test both t41 and t42 get statistics."""
        query = analyze("select * from t41 where x1 = (select max(x2) from t42)", t41_t42)

        result = StatisticsCoordinator(t41_t42).run(query)

        assert names(result.maintained) == ["t41", "t42"]
        assert names(t41_t42.maintenance_log) == ["t41", "t42"]
        for name in ("t41", "t42"):
            assert t41_t42.statistics_count(t41_t42.resolve_name("public", name)) > 0

    def test_second_run_is_noop(self, t41_t42, analyze):
        """Test tables with statistics are not analyzed again."""
        query = analyze("select * from t41 join t42 on x1 = x2", t41_t42)
        coordinator = StatisticsCoordinator(t41_t42)

        coordinator.run(query)
        result = coordinator.run(query)

        assert result.maintained == []
        assert names(result.fresh) == ["t41", "t42"]
        assert len(t41_t42.maintenance_log) == 2

    def test_views_never_targeted(self, view_stack, analyze):
        """Test select from a nested view analyzes only the base table."""
        query = analyze("select * from v_b", view_stack)

        result = StatisticsCoordinator(view_stack).run(query)

        assert names(view_stack.maintenance_log) == ["t500"]
        assert [view_stack.lookup(r).kind for r in result.targets] == [RelationKind.BASE_TABLE]

    def test_view_and_table_together(self, view_stack, analyze):
        """Test a table reached directly and through a view is analyzed once."""
        query = analyze("select * from t500, v_a", view_stack)

        StatisticsCoordinator(view_stack).run(query)

        assert names(view_stack.maintenance_log) == ["t500"]

    def test_two_views_sharing_a_base(self, view_stack, analyze):
        query = analyze("select * from v_a, v_b where exists (select 1 from v500)", view_stack)

        result = StatisticsCoordinator(view_stack).run(query)

        assert names(result.maintained) == ["t500"]

    def test_non_owner_is_denied_without_error(self, catalog, analyze):
        """Test tables owned by someone else are skipped silently."""
        catalog.add_user("bob")
        catalog.add_table("mine")
        catalog.add_table("theirs", owner="bob")
        query = analyze("select * from mine, theirs", catalog)

        result = StatisticsCoordinator(catalog).run(query)

        assert names(result.maintained) == ["mine"]
        assert names(result.denied) == ["theirs"]
        assert names(catalog.maintenance_log) == ["mine"]

    def test_denied_is_logged(self, catalog, analyze, caplog):
        catalog.add_table("theirs", owner="bob")
        query = analyze("select * from theirs", catalog)

        with caplog.at_level("INFO", logger="jitstats.coordinator"):
            StatisticsCoordinator(catalog).run(query)

        assert "user alice is not owner (bob)" in caplog.text

    def test_denied_not_logged_when_disabled(self, catalog, analyze, caplog):
        catalog.add_table("theirs", owner="bob")
        query = analyze("select * from theirs", catalog)
        config = JitStatsConfig(report_denied=False)

        with caplog.at_level("INFO", logger="jitstats.coordinator"):
            StatisticsCoordinator(catalog, config=config).run(query)

        assert "not owner" not in caplog.text

    def test_superuser_analyzes_anything(self, analyze):
        catalog = InMemoryCatalog(current_user="postgres", superuser=True)
        catalog.add_table("t", owner="bob")
        query = analyze("select * from t", catalog)

        result = StatisticsCoordinator(catalog).run(query)

        assert names(result.maintained) == ["t"]

    def test_excluded_schema(self, catalog, analyze):
        catalog.add_table("t", schema="archive")
        query = analyze("select * from archive.t", catalog)
        config = JitStatsConfig(excluded_schemas=["archive"])

        result = StatisticsCoordinator(catalog, config=config).run(query)

        assert names(result.excluded) == ["t"]
        assert catalog.maintenance_log == []

    def test_dry_run(self, t41_t42, analyze):
        """Test dry run reports the plan without running maintenance."""
        query = analyze("select * from t41", t41_t42)
        config = JitStatsConfig(dry_run=True)

        result = StatisticsCoordinator(t41_t42, config=config).run(query)

        assert names(result.planned) == ["t41"]
        assert result.maintained == []
        assert t41_t42.maintenance_log == []

    def test_partitioned_parent_analyzed_once(self, catalog, analyze):
        catalog.add_relation("measurements", RelationKind.PARTITION)
        query = analyze(
            "select * from measurements m1 join measurements m2 on m1.id = m2.id",
            catalog,
        )

        result = StatisticsCoordinator(catalog).run(query)

        assert names(result.maintained) == ["measurements"]

    def test_cte_named_like_its_table(self, t41_t42, analyze):
        """Test a CTE reading the table it shadows still gets it analyzed."""
        query = analyze("with t41 as (select * from t41) select * from t41", t41_t42)

        result = StatisticsCoordinator(t41_t42).run(query)

        assert names(result.maintained) == ["t41"]

    def test_cte_defined_after_its_reader(self, t41_t42, analyze):
        query = analyze(
            "with a as (select * from t42), t42 as (select 1) select * from a", t41_t42
        )

        result = StatisticsCoordinator(t41_t42).run(query)

        assert names(result.maintained) == ["t42"]

    def test_insert_target_and_source(self, t41_t42, analyze):
        query = analyze("insert into t41 select x2 from t42", t41_t42)

        result = StatisticsCoordinator(t41_t42).run(query)

        assert names(result.maintained) == ["t41", "t42"]

    def test_no_relations(self, catalog, analyze):
        query = analyze("select 1", catalog)

        result = StatisticsCoordinator(catalog).run(query)

        assert not result.referenced
        assert catalog.lookup_calls == 0

    def test_to_dict(self, t41_t42, analyze):
        query = analyze("select * from t41", t41_t42)

        result = StatisticsCoordinator(t41_t42, config=JitStatsConfig(dry_run=True)).run(query)

        assert result.to_dict() == {
            "referenced": ["public.t41"],
            "targets": ["public.t41"],
            "maintained": [],
            "planned": ["public.t41"],
            "fresh": [],
            "denied": [],
            "excluded": [],
        }


class TestViewExpansionCalls:
    """Tests for when the resolver is consulted."""

    def test_not_called_for_base_tables(self, t41_t42, analyze):
        resolver = Mock(wraps=ViewDependencyResolver(t41_t42))
        query = analyze("select * from t41, t42", t41_t42)

        StatisticsCoordinator(t41_t42, resolver=resolver).run(query)

        resolver.expand.assert_not_called()

    def test_called_once_per_view(self, view_stack, analyze):
        resolver = Mock(wraps=ViewDependencyResolver(view_stack))
        query = analyze("select * from v_b", view_stack)

        StatisticsCoordinator(view_stack, resolver=resolver).run(query)

        assert resolver.expand.call_count == 1


class TestErrors:
    """Tests for fatal conditions."""

    def test_unexpected_kind_in_view(self, catalog, analyze):
        seq = catalog.add_relation("seq", RelationKind.OTHER)
        catalog.add_view("v", depends_on=[seq])
        query = analyze("select * from v", catalog)
        guard = ReentrancyGuard()

        with pytest.raises(UnexpectedRelationKind):
            StatisticsCoordinator(catalog, guard=guard).run(query)

        assert not guard.active

    def test_unexpected_kind_referenced_directly(self, catalog):
        other = catalog.add_relation("ft", RelationKind.OTHER)
        query = Query(rtable=(RangeTblEntry(kind=RteKind.RELATION, relid=other.id),))

        with pytest.raises(UnexpectedRelationKind):
            StatisticsCoordinator(catalog).run(query)

    def test_missing_relation(self, catalog):
        query = Query(rtable=(RangeTblEntry(kind=RteKind.RELATION, relid=424242),))

        with pytest.raises(RelationNotFound):
            StatisticsCoordinator(catalog).run(query)

    def test_maintenance_failure_releases_guard(self, t41_t42, analyze):
        """Test a failed ANALYZE aborts the pass and leaves the guard idle."""
        t41_t42.fail_maintenance.add(t41_t42.resolve_name("public", "t41"))
        query = analyze("select * from t41", t41_t42)
        guard = ReentrancyGuard()
        coordinator = StatisticsCoordinator(t41_t42, guard=guard)

        with pytest.raises(MaintenanceFailure, match="cannot run analyze for public.t41"):
            coordinator.run(query)

        assert not guard.active
        t41_t42.fail_maintenance.clear()
        assert names(coordinator.run(query).maintained) == ["t41"]


class TestReentrancy:
    """Tests for the guard."""

    def test_busy_guard_skips_pass(self, t41_t42, analyze):
        guard = ReentrancyGuard()
        query = analyze("select * from t41", t41_t42)
        coordinator = StatisticsCoordinator(t41_t42, guard=guard)

        with guard.held():
            assert coordinator.run(query) is None

        assert t41_t42.maintenance_log == []
        assert coordinator.passes == 0

    def test_nested_run_during_maintenance(self, t41_t42, analyze):
        """Test a statement issued by maintenance does not start a second pass."""
        guard = ReentrancyGuard()
        coordinator = StatisticsCoordinator(t41_t42, guard=guard)
        nested = analyze("select * from t42", t41_t42)
        nested_results = []
        t41_t42.on_maintenance = lambda record: nested_results.append(coordinator.run(nested))

        coordinator.run(analyze("select * from t41", t41_t42))

        assert nested_results == [None]
        assert guard.entered_count == 1
        assert names(t41_t42.maintenance_log) == ["t41"]
