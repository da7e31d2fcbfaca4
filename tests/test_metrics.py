"""
Unit tests for dashboard aggregates, the flash-info ticker and the metrics engine.
"""

import asyncio
from datetime import date

from ebf.feed import ChangeEvent
from ebf.metrics import (
    MetricsEngine, combine_ticker, compute_satisfaction, compute_totals, domain_counts, finance_by_date,
    generate_auto_ticker, margin_percent, stock_alerts, technician_names,
)
from ebf.models import ChangeKind, DailyReport, DailyStat, StockItem, TickerMessage
from ebf.state import AppState
from ebf.store import EntityStore

TODAY = date(2024, 5, 15)


# ── Helpers / Fakes ──────────────────────────────────────────────────

class EmptyRemote:
    async def fetch_all(self, table):
        return []


def make_engine(clock=lambda: TODAY, **kwargs):
    state = AppState()
    store = EntityStore(EmptyRemote(), state)
    return MetricsEngine(store, state, clock=clock, **kwargs), store, state


def insert(store, table, **row):
    store.apply_change(ChangeEvent(ChangeKind.INSERT, table, row))


async def wait_until(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


# ── Tests: aggregates ────────────────────────────────────────────────

def test_totals():
    stats = [
        DailyStat(date="2024-05-15", site="Abidjan", revenue=100, profit=30, expenses=70, interventions=2),
        DailyStat(date="2024-05-14", site="Bouaké", revenue=50, profit=-10, expenses=60, interventions=1),
    ]
    t = compute_totals(stats)
    assert (t.revenue, t.profit, t.expenses, t.interventions) == (150, 20, 130, 3)
    assert compute_totals([]).revenue == 0


def test_margin_for_zero_revenue_is_exactly_zero():
    assert margin_percent(0, 0) == 0
    assert margin_percent(0, -500) == 0
    assert margin_percent(150000, 45000) == 30.0
    assert margin_percent(3, 1) == 33.3


def test_satisfaction_ignores_unrated_reports():
    reports = [DailyReport(rating=4), DailyReport(rating=5), DailyReport(rating=3),
               DailyReport(rating=0), DailyReport(rating=None)]
    s = compute_satisfaction(reports)
    assert s.average == 4.0
    assert s.count == 3
    assert s.has_data


def test_satisfaction_without_ratings_has_no_data():
    s = compute_satisfaction([DailyReport(rating=0)])
    assert s.average is None and s.count == 0
    assert not compute_satisfaction([]).has_data


# ── Tests: ticker ────────────────────────────────────────────────────

def test_positive_day_message():
    stats = [DailyStat(date="2024-05-15", site="Abidjan", revenue=150000, profit=45000)]
    assert margin_percent(compute_totals(stats).revenue, compute_totals(stats).profit) == 30.0
    messages = generate_auto_ticker(stats, TODAY)
    day = [m for m in messages if m.id == "auto-day"]
    assert len(day) == 1
    assert day[0].type == "success"
    assert "+30.0%" in day[0].text
    assert day[0].display_order == 100
    assert not day[0].is_manual


def test_auto_ticker_periods_and_orders():
    stats = [DailyStat(date="2024-05-15", site="Abidjan", revenue=100, profit=10)]
    messages = generate_auto_ticker(stats, TODAY)
    assert [(m.id, m.display_order) for m in messages] == [
        ("auto-day", 100), ("auto-week", 101), ("auto-month", 102), ("auto-year", 103),
    ]
    assert messages[-1].type == "info"


def test_negative_margin_is_an_alert():
    stats = [DailyStat(date="2024-05-15", site="Abidjan", revenue=100, profit=-25)]
    day = generate_auto_ticker(stats, TODAY)[0]
    assert day.type == "alert"
    assert "-25.0%" in day.text


def test_zero_margin_and_empty_periods_produce_nothing():
    stats = [
        DailyStat(date="2024-05-15", site="Abidjan", revenue=0, profit=0),
        DailyStat(date="2023-01-10", site="Abidjan", revenue=100, profit=50),
    ]
    assert generate_auto_ticker(stats, TODAY) == []


def test_no_stats_gives_welcome_message():
    messages = generate_auto_ticker([], TODAY)
    assert len(messages) == 1
    assert messages[0].id == "welcome-default"
    assert messages[0].type == "info"


def test_stock_alert_follows_site_filter():
    stock = [StockItem(id="s1", name="Câble", quantity=45, threshold=50, unit="m", site="Abidjan")]
    alerts = stock_alerts(stock, "Abidjan")
    assert len(alerts) == 1
    assert alerts[0].type == "alert"
    assert alerts[0].id == "stock-alert-s1"
    assert "Câble (45 m restants) à Abidjan" in alerts[0].text
    assert stock_alerts(stock, "Bouaké") == []
    assert len(stock_alerts(stock, "Global")) == 1


def test_combine_ticker_order():
    alerts = [TickerMessage(id="stock-alert-1", type="alert")]
    auto = [TickerMessage(id="auto-year", display_order=103), TickerMessage(id="auto-day", display_order=100)]
    manual = [TickerMessage(id="m2", display_order=2, is_manual=True),
              TickerMessage(id="m1", display_order=1, is_manual=True)]
    ids = [m.id for m in combine_ticker(alerts, auto, manual)]
    assert ids == ["stock-alert-1", "auto-day", "auto-year", "m1", "m2"]


# ── Tests: MetricsEngine ─────────────────────────────────────────────

def test_snapshot_follows_filters():
    engine, store, state = make_engine()
    insert(store, "daily_stats", date="2024-05-15", site="Abidjan", revenue=100, profit=20)
    insert(store, "daily_stats", date="2024-05-15", site="Bouaké", revenue=300, profit=30)
    insert(store, "daily_stats", date="2023-05-15", site="Abidjan", revenue=999, profit=0)
    insert(store, "reports", id="r1", date="2024-05-15", site="Abidjan", rating=5)

    snap = engine.refresh_auto_ticker()
    assert snap.totals.revenue == 400
    assert snap.margin_percent == 12.5

    state.set_site("Abidjan")
    snap = engine.recompute()
    assert snap.totals.revenue == 100
    assert snap.satisfaction.average == 5.0

    state.set_period(None)
    assert engine.recompute().totals.revenue == 1099


def test_engine_reacts_to_store_and_state_changes():
    async def scenario():
        engine, store, state = make_engine(refresh_interval=60)
        engine.start()
        assert [m.id for m in engine.snapshot.ticker] == ["welcome-default"]

        insert(store, "daily_stats", date="2024-05-15", site="Abidjan", revenue=100, profit=10)
        assert engine.snapshot.ticker[0].id == "auto-day"

        insert(store, "stocks", id="s1", name="Câble", quantity=1, threshold=5, unit="m", site="Bouaké")
        assert engine.snapshot.ticker[0].id == "stock-alert-s1"

        state.set_site("Abidjan")
        assert all(m.id != "stock-alert-s1" for m in engine.snapshot.ticker)

        insert(store, "ticker_messages", id="t1", text="Réunion", display_order=1)
        assert engine.snapshot.ticker[-1].id == "t1"

        engine.stop()
        running = engine.timer.running
        insert(store, "stocks", id="s2", name="Gaine", quantity=0, threshold=1, unit="m", site="Abidjan")
        return engine, running

    engine, running = asyncio.run(scenario())
    assert not running
    assert all(m.id != "stock-alert-s2" for m in engine.snapshot.ticker)


def test_timer_picks_up_date_rollover():
    async def scenario():
        today = [TODAY]
        engine, store, state = make_engine(clock=lambda: today[0], refresh_interval=0.01)
        insert(store, "daily_stats", date="2024-05-15", site="Abidjan", revenue=100, profit=10)
        engine.start()
        assert engine.auto_messages
        today[0] = date(2025, 1, 2)
        await wait_until(lambda: engine.auto_messages == [])
        runs = engine.timer.runs
        engine.stop()
        return runs

    assert asyncio.run(scenario()) >= 1


# ── Tests: report synthesis ──────────────────────────────────────────

def test_domain_counts_cover_the_four_trades():
    reports = [
        DailyReport(domain="Froid"), DailyReport(domain="Froid"),
        DailyReport(domain="Plomberie"), DailyReport(domain="Jardinage"), DailyReport(),
    ]
    assert domain_counts(reports) == {"Electricité": 0, "Bâtiment": 0, "Froid": 2, "Plomberie": 1}


def test_finance_by_date_sums_and_sorts():
    reports = [
        DailyReport(date="2024-05-15", revenue=1000, expenses=200),
        DailyReport(date="2024-05-14", revenue=500),
        DailyReport(date="2024-05-15", revenue=300, expenses=100),
        DailyReport(date=None, revenue=9999),
    ]
    df = finance_by_date(reports)
    assert df["date"].tolist() == ["2024-05-14", "2024-05-15"]
    assert df["revenue"].tolist() == [500, 1300]
    assert df["expenses"].tolist() == [0, 300]
    assert finance_by_date([]).empty


def test_technician_names_keep_first_appearance():
    reports = [DailyReport(technician_name=n) for n in ("Kouassi", "Traoré", "Kouassi", "")]
    assert technician_names(reports) == ["Kouassi", "Traoré"]


def test_engine_synthesis_by_technician_and_range():
    engine, store, state = make_engine()
    insert(store, "reports", id="r1", technicianName="Kouassi", date="2024-05-15", site="Abidjan",
           domain="Froid", revenue=1000, expenses=400, rating=4)
    insert(store, "reports", id="r2", technicianName="Traoré", date="2024-05-14", site="Abidjan",
           domain="Plomberie", revenue=500)
    insert(store, "reports", id="r3", technicianName="Kouassi", date="2024-04-20", site="Abidjan",
           domain="Froid", revenue=700)

    month = engine.synthesis()
    assert [r.id for r in month.reports] == ["r1", "r2"]
    assert month.technicians == ["Kouassi", "Traoré"]

    mine = engine.synthesis(technician="Kouassi", start="2024-04-01", end="2024-05-31")
    assert [r.id for r in mine.reports] == ["r1", "r3"]
    assert mine.domains["Froid"] == 2
    assert mine.finance["revenue"].tolist() == [700, 1000]
    assert mine.satisfaction.average == 4.0
