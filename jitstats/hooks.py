"""
Hooks: interception-point handlers that run the coordinator.

Two interception points exist on a session:
- post_parse_analyze_hook(query): after a statement is parsed and analyzed
- executor_start_hook(query, standard_start): before a plannable statement
  runs; must end by calling the previous handler or standard_start()

Installing a hook saves whatever handler was there before and chains to it,
so several extensions can stack on one session.
"""

import logging
from typing import TYPE_CHECKING, Any, Callable

from jitstats.config import InterceptionPoint, JitStatsConfig
from jitstats.coordinator import StatisticsCoordinator
from jitstats.errors import JitStatsError
from jitstats.query_tree import Query

if TYPE_CHECKING:
    from jitstats.catalog import RelationCatalog
    from jitstats.session import InterceptingSession

logger = logging.getLogger(__name__)

PostParseHook = Callable[[Query], None]
ExecutorStartHook = Callable[[Query, Callable[[], Any]], Any]


class StatisticsHook:
    """
    Runs a StatisticsCoordinator at an interception point, then forwards.

    Args:
        coordinator: Coordinator to run
        config: Provides enabled and on_error
        previous_post_parse: Handler that was installed before this one
        previous_executor_start: Handler that was installed before this one
    """

    def __init__(
        self,
        coordinator: StatisticsCoordinator,
        config: JitStatsConfig | None = None,
        previous_post_parse: PostParseHook | None = None,
        previous_executor_start: ExecutorStartHook | None = None,
    ):
        self.coordinator = coordinator
        self.config = config or coordinator.config
        self.previous_post_parse = previous_post_parse
        self.previous_executor_start = previous_executor_start
        self.last_result = None

    def _run_coordinator(self, query: Query) -> None:
        if not self.config.enabled:
            return
        try:
            self.last_result = self.coordinator.run(query)
        except JitStatsError as e:
            if self.config.on_error == "raise":
                raise
            logger.warning("statistics check failed, continuing without it: %s", e)

    def post_parse_analyze(self, query: Query) -> None:
        """Post-parse-analyze entry point."""
        self._run_coordinator(query)
        if self.previous_post_parse is not None:
            self.previous_post_parse(query)

    def executor_start(self, query: Query, standard_start: Callable[[], Any]) -> Any:
        """Executor-start entry point; returns whatever execution returns."""
        self._run_coordinator(query)
        if self.previous_executor_start is not None:
            return self.previous_executor_start(query, standard_start)
        return standard_start()


def install_statistics_hook(
    session: "InterceptingSession",
    catalog: "RelationCatalog | None" = None,
    config: JitStatsConfig | None = None,
) -> StatisticsHook:
    """
    Install a StatisticsHook on a session at the configured interception point.

    Args:
        session: Session to hook into; its guard is shared with the coordinator
        catalog: Catalog for the coordinator (defaults to the session's)
        config: Settings (defaults to the session's)

    Returns:
        The installed hook (pass it to uninstall_statistics_hook)
    """
    config = config or session.config
    coordinator = StatisticsCoordinator(
        catalog or session.catalog,
        guard=session.guard,
        config=config,
    )
    hook = StatisticsHook(
        coordinator,
        config=config,
        previous_post_parse=session.post_parse_analyze_hook,
        previous_executor_start=session.executor_start_hook,
    )

    if config.interception_point is InterceptionPoint.EXECUTOR_START:
        session.executor_start_hook = hook.executor_start
    else:
        session.post_parse_analyze_hook = hook.post_parse_analyze

    logger.debug("statistics hook installed at %s", config.interception_point.value)
    return hook


def uninstall_statistics_hook(session: "InterceptingSession", hook: StatisticsHook) -> None:
    """Restore the handlers that were in place before install_statistics_hook()."""
    session.post_parse_analyze_hook = hook.previous_post_parse
    session.executor_start_hook = hook.previous_executor_start
