"""
Derived dashboard metrics – totals, margin, satisfaction and the flash-info ticker.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

import pandas as pd

from ebf.config import TICKER_REFRESH_SECONDS
from ebf.filters import filter_reports, filter_strict, matches_period, matches_site
from ebf.models import DailyReport, DailyStat, Period, StockItem, TickerMessage
from ebf.tasks import RepeatingTask

logger = logging.getLogger(__name__)

STAT_COLUMNS = ["revenue", "expenses", "profit", "interventions"]
FINANCE_COLUMNS = ["date", "revenue", "expenses"]
REPORT_DOMAINS = ("Electricité", "Bâtiment", "Froid", "Plomberie")

WELCOME_MESSAGE = "Bienvenue sur EBF Manager. Le système est prêt et connecté."

# (period, id, display order, positive text, negative text, positive type)
_AUTO_PERIODS = (
    (Period.DAY, "auto-day", 100,
     "Félicitations ! Nous sommes à +{p:.1f}% de bénéfice aujourd'hui.",
     "Alerte : Nous sommes à {p:.1f}% de perte aujourd'hui.", "success"),
    (Period.WEEK, "auto-week", 101,
     "Bravo ! Cette semaine enregistre +{p:.1f}% de marge positive.",
     "Attention ! Nous sommes à {p:.1f}% de perte cette semaine.", "success"),
    (Period.MONTH, "auto-month", 102,
     "Excellent ! Le mois en cours est à +{p:.1f}% de rentabilité.",
     "Vigilance : Le cumul mensuel est à {p:.1f}%.", "success"),
    (Period.YEAR, "auto-year", 103,
     "Bilan Annuel Global : +{p:.1f}% de marge.",
     "Bilan Annuel Global : {p:.1f}% de marge.", "info"),
)


@dataclass
class Totals:
    revenue: float = 0.0
    expenses: float = 0.0
    profit: float = 0.0
    interventions: int = 0


@dataclass
class Satisfaction:
    average: Optional[float]    # None: no rated report
    count: int

    @property
    def has_data(self) -> bool:
        return self.average is not None


@dataclass
class DashboardSnapshot:
    totals: Totals
    margin_percent: float
    satisfaction: Satisfaction
    ticker: List[TickerMessage] = field(default_factory=list)
    stats: List[DailyStat] = field(default_factory=list)
    reports: List[DailyReport] = field(default_factory=list)


@dataclass
class ReportSynthesis:
    reports: List[DailyReport]
    domains: Dict[str, int]
    finance: pd.DataFrame
    satisfaction: Satisfaction
    technicians: List[str]


# ── Aggregates ───────────────────────────────────────────────────────

def compute_totals(stats: Sequence[DailyStat]) -> Totals:
    """Plain sums over the given stats rows."""
    if not stats:
        return Totals()
    df = pd.DataFrame([{c: getattr(s, c) for c in STAT_COLUMNS} for s in stats], columns=STAT_COLUMNS)
    sums = df.apply(pd.to_numeric, errors="coerce").fillna(0).sum()
    return Totals(
        revenue=float(sums["revenue"]),
        expenses=float(sums["expenses"]),
        profit=float(sums["profit"]),
        interventions=int(sums["interventions"]),
    )


def margin_percent(revenue: float, profit: float) -> float:
    """Profit over revenue in percent, one decimal; 0 when there is no revenue."""
    if not revenue or revenue <= 0:
        return 0.0
    return round(profit / revenue * 100, 1)


def compute_satisfaction(reports: Sequence[DailyReport]) -> Satisfaction:
    """Mean client rating over rated reports (rating > 0)."""
    ratings = pd.to_numeric(pd.Series([r.rating for r in reports], dtype="object"), errors="coerce")
    rated = ratings[ratings > 0]
    if rated.empty:
        return Satisfaction(average=None, count=0)
    return Satisfaction(average=round(float(rated.mean()), 1), count=int(rated.size))


# ── Report synthesis ─────────────────────────────────────────────────

def domain_counts(reports: Sequence[DailyReport]) -> Dict[str, int]:
    """Reports per trade domain; other domains are not counted."""
    counts = pd.Series([r.domain for r in reports], dtype="object").value_counts()
    return {d: int(counts.get(d, 0)) for d in REPORT_DOMAINS}


def finance_by_date(reports: Sequence[DailyReport]) -> pd.DataFrame:
    """Revenue and expenses summed per report day, oldest first."""
    rows = [{"date": r.date, "revenue": r.revenue, "expenses": r.expenses} for r in reports if r.date]
    if not rows:
        return pd.DataFrame(columns=FINANCE_COLUMNS)
    df = pd.DataFrame(rows, columns=FINANCE_COLUMNS)
    df[["revenue", "expenses"]] = df[["revenue", "expenses"]].apply(pd.to_numeric, errors="coerce").fillna(0)
    return df.groupby("date", as_index=False)[["revenue", "expenses"]].sum().sort_values("date", ignore_index=True)


def technician_names(reports: Sequence[DailyReport]) -> List[str]:
    """Report authors in order of first appearance."""
    return list(dict.fromkeys(r.technician_name for r in reports if r.technician_name))


# ── Ticker ───────────────────────────────────────────────────────────

def generate_auto_ticker(stats: Sequence[DailyStat], today: Optional[date] = None) -> List[TickerMessage]:
    """One profitability message per period with data, or a welcome message."""
    if not stats:
        return [TickerMessage(id="welcome-default", text=WELCOME_MESSAGE, type="info", display_order=0)]

    messages = []
    for period, ident, order, positive, negative, positive_type in _AUTO_PERIODS:
        subset = [s for s in stats if matches_period(s.date, period, today)]
        if not subset:
            continue
        totals = compute_totals(subset)
        percent = margin_percent(totals.revenue, totals.profit)
        if percent == 0:
            continue
        if percent > 0:
            text, kind = positive.format(p=percent), positive_type
        else:
            text, kind = negative.format(p=percent), "alert"
        messages.append(TickerMessage(id=ident, text=text, type=kind, display_order=order))
    return messages


def _fmt_quantity(value) -> str:
    return f"{value:g}" if isinstance(value, (int, float)) else str(value)


def stock_alerts(stock: Sequence[StockItem], site: Optional[str]) -> List[TickerMessage]:
    """Alert for every item at or under its threshold on the selected site."""
    return [
        TickerMessage(
            id=f"stock-alert-{item.id}",
            text=(f"⚠️ STOCK CRITIQUE : {item.name} "
                  f"({_fmt_quantity(item.quantity)} {item.unit} restants) à {item.site or 'Global'}"),
            type="alert",
            display_order=0,
        )
        for item in stock
        if matches_site(item.site, site) and item.is_low
    ]


def combine_ticker(alerts: Sequence[TickerMessage], auto: Sequence[TickerMessage],
                   manual: Sequence[TickerMessage]) -> List[TickerMessage]:
    """Stock alerts first, then automatic messages, then manual ones."""
    return (list(alerts)
            + sorted(auto, key=lambda m: m.display_order)
            + sorted(manual, key=lambda m: m.display_order))


# ── Engine ───────────────────────────────────────────────────────────

class MetricsEngine:
    """
    Keeps a DashboardSnapshot in step with the store and the session filters.

    The automatic ticker is rebuilt on every stats change and on a timer, so
    a date rollover (midnight, new week, new month) is picked up without any
    data change.
    """

    WATCHED = {DailyStat.TABLE, StockItem.TABLE, DailyReport.TABLE, TickerMessage.TABLE}

    def __init__(self, store, state, refresh_interval: float = TICKER_REFRESH_SECONDS,
                 clock: Callable[[], date] = date.today):
        self.store = store
        self.state = state
        self.clock = clock
        self.auto_messages: List[TickerMessage] = []
        self.snapshot: Optional[DashboardSnapshot] = None
        self.timer = RepeatingTask(self.refresh_auto_ticker, refresh_interval, name="auto-ticker")
        self._listener = None
        self._unobserve = None

    def start(self) -> None:
        if self._listener is None:
            self._listener = self.store.add_listener(self._on_store_change)
            self._unobserve = self.state.observe(self._on_state_change)
        self.refresh_auto_ticker()
        self.timer.start()

    def stop(self) -> None:
        self.timer.cancel()
        if self._listener is not None:
            self._listener.remove()
            self._unobserve()
            self._listener = self._unobserve = None

    def _on_store_change(self, table: str) -> None:
        if table == DailyStat.TABLE:
            self.refresh_auto_ticker()
        elif table in self.WATCHED:
            self.recompute()

    def _on_state_change(self, what: str) -> None:
        if what in ("site", "period"):
            self.recompute()

    def refresh_auto_ticker(self) -> DashboardSnapshot:
        self.auto_messages = generate_auto_ticker(self.store.records(DailyStat.TABLE), self.clock())
        logger.debug("Auto ticker rebuilt: %d messages", len(self.auto_messages))
        return self.recompute()

    def recompute(self) -> DashboardSnapshot:
        today = self.clock()
        site, period = self.state.site, self.state.period
        stats = filter_strict(self.store.records(DailyStat.TABLE), site, period, today)
        reports = filter_strict(self.store.records(DailyReport.TABLE), site, period, today)
        totals = compute_totals(stats)
        ticker = combine_ticker(
            stock_alerts(self.store.records(StockItem.TABLE), site),
            self.auto_messages,
            self.store.manual_ticker_messages(),
        )
        self.snapshot = DashboardSnapshot(
            totals=totals,
            margin_percent=margin_percent(totals.revenue, totals.profit),
            satisfaction=compute_satisfaction(reports),
            ticker=ticker,
            stats=stats,
            reports=reports,
        )
        return self.snapshot

    def synthesis(self, technician: Optional[str] = None, start=None, end=None) -> ReportSynthesis:
        """Report synthesis for the session site, narrowed by author and/or a day range."""
        all_reports = self.store.records(DailyReport.TABLE)
        reports = filter_reports(all_reports, self.state.site, self.state.period,
                                 technician=technician, start=start, end=end, today=self.clock())
        return ReportSynthesis(
            reports=reports,
            domains=domain_counts(reports),
            finance=finance_by_date(reports),
            satisfaction=compute_satisfaction(reports),
            technicians=technician_names(all_reports),
        )
