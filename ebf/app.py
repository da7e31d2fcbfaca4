"""
Application wiring – one store, one feed, one metrics engine per session.
"""

import logging
from datetime import date
from typing import Callable, Dict, Optional, Tuple

from ebf.analysis import analyze_business_data, analyze_reports
from ebf.auth import AuthService, IdentityProvider
from ebf.config import OPTIMISTIC_UPDATES
from ebf.errors import NetworkFailure
from ebf.feed import ChangeFeed, Synchronizer
from ebf.metrics import DashboardSnapshot, MetricsEngine, ReportSynthesis
from ebf.state import AppState
from ebf.store import EntityStore

logger = logging.getLogger(__name__)


class Application:
    """
    Startup: bulk-load every table, then attach the change feed and the
    metrics engine. Sign-out tears all of it down and resets the state.
    """

    def __init__(self, remote, provider: Optional[IdentityProvider] = None, llm=None,
                 state: Optional[AppState] = None, optimistic: bool = OPTIMISTIC_UPDATES,
                 clock: Callable[[], date] = date.today):
        self.remote = remote
        self.llm = llm
        self.state = state or AppState()
        self.store = EntityStore(remote, self.state, optimistic=optimistic)
        self.feed = ChangeFeed(remote, self.store.tables)
        self.sync = Synchronizer(self.store, self.feed)
        self.metrics = MetricsEngine(self.store, self.state, clock=clock)
        self.auth = AuthService(provider, remote, self.state)
        self.auth.on_signed_out.append(self.teardown)
        self.started = False

    async def load_all(self) -> Dict[str, int]:
        """Initial snapshot; a table that cannot be fetched stays empty."""
        counts = {}
        for table in self.store.tables:
            try:
                counts[table] = await self.store.load(table)
            except NetworkFailure as e:
                logger.warning("Could not load %s: %s", table, e)
        return counts

    async def start(self) -> Dict[str, int]:
        counts = await self.load_all()
        self.sync.start()
        self.metrics.start()
        self.auth.watch()
        self.started = True
        logger.info("Started with %d rows", sum(counts.values()))
        return counts

    def teardown(self) -> None:
        """Synchronous part of stop(), safe to call from a session-change callback."""
        self.metrics.stop()
        if self.sync.subscription is not None:
            self.sync.subscription.cancel()
        self.started = False

    async def stop(self) -> None:
        self.metrics.stop()
        await self.sync.stop()
        self.auth.unwatch()
        self.started = False

    # ── Dashboard ────────────────────────────────────────────────────

    def dashboard(self) -> DashboardSnapshot:
        return self.metrics.snapshot or self.metrics.recompute()

    def synthesis(self, technician: Optional[str] = None, start=None, end=None) -> ReportSynthesis:
        return self.metrics.synthesis(technician, start, end)

    async def ai_summary(self, technician: Optional[str] = None,
                         start=None, end=None) -> Tuple[str, str]:
        """
        (business analysis, report synthesis) for the current filters. The
        reports can be narrowed to one technician and/or a day range.
        """
        snapshot = self.dashboard()
        business = await analyze_business_data(self.llm, snapshot.stats, self.state.site)
        synthesis = self.synthesis(technician, start, end)
        period = f"du {start or '-'} au {end or '-'}" if (start or end) else self.state.period
        reports = await analyze_reports(self.llm, synthesis.reports, period)
        return business, reports
