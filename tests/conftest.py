"""
Shared fixtures: in-memory catalogs for the scenarios used across tests.
"""

import pytest

from jitstats.memory_catalog import InMemoryCatalog
from jitstats.query_analyzer import analyze_sql


@pytest.fixture
def catalog() -> InMemoryCatalog:
    """Empty catalog; the session runs as non-superuser alice."""
    return InMemoryCatalog(current_user="alice", superuser=False)


@pytest.fixture
def t41_t42(catalog: InMemoryCatalog) -> InMemoryCatalog:
    """Tables t41(x1), t42(x2) owned by alice, no statistics."""
    catalog.add_table("t41")
    catalog.add_table("t42")
    return catalog


@pytest.fixture
def view_stack(catalog: InMemoryCatalog) -> InMemoryCatalog:
    """t500 <- v500 <- v_a <- v_b."""
    t500 = catalog.add_table("t500")
    v500 = catalog.add_view("v500", depends_on=[t500])
    v_a = catalog.add_view("v_a", depends_on=[v500])
    catalog.add_view("v_b", depends_on=[v_a])
    return catalog


@pytest.fixture
def analyze():
    """Analyze a single SQL statement against a catalog."""
    def _analyze(sql: str, catalog, search_path=None):
        queries = analyze_sql(sql, catalog, search_path=search_path)
        assert len(queries) == 1
        return queries[0]
    return _analyze
