"""
Unit tests for record types and row conversion.
"""

import pytest

from ebf.models import (
    DailyReport, DailyStat, Intervention, Notification, Site, StockItem, TickerMessage,
    as_key, key_to_row, record_from_row, to_number,
)


def test_from_row_maps_remote_column_names():
    rec = record_from_row("interventions", {
        "id": "i1", "client": "Koné", "clientPhone": "0707", "technicianName": "Yao",
        "date": "2024-05-15", "unknown": "ignored",
    })
    assert isinstance(rec, Intervention)
    assert rec.client_phone == "0707"
    assert rec.technician_name == "Yao"
    assert rec.status == "Pending"


def test_to_row_uses_remote_names_and_skips_unpersisted_fields():
    row = TickerMessage(id="t1", text="Hello", display_order=2, is_manual=True).to_row()
    assert row == {"id": "t1", "text": "Hello", "type": "info", "display_order": 2}
    assert "clientPhone" in Intervention(id="x").to_row()


@pytest.mark.parametrize("raw,expected", [
    ("12", 12), ("2.5", 2.5), (" 1 500 ", 1500), (7, 7), (True, 0), ("abc", 0), (None, 0),
])
def test_to_number(raw, expected):
    assert to_number(raw, 0) == expected


def test_numbers_are_coerced_with_defaults():
    item = record_from_row("stocks", {"id": "s1", "quantity": "45", "threshold": "n/a"})
    assert item.quantity == 45
    assert item.threshold == 0


def test_rating_stays_none_when_missing():
    assert DailyReport.from_row({"id": "r1"}).rating is None
    assert DailyReport.from_row({"id": "r1", "rating": "4"}).rating == 4


def test_flag_none_keeps_default():
    assert Notification.from_row({"id": "n1", "read": None}).read is False
    assert Notification.from_row({"id": "n1", "read": 1}).read is True


def test_daily_stat_composite_key():
    stat = DailyStat(date="2024-05-15", site=Site.ABIDJAN)
    assert stat.key == ("2024-05-15", "Abidjan")
    assert as_key("daily_stats", {"date": "2024-05-15", "site": "Abidjan", "revenue": 1}) == stat.key
    assert key_to_row("daily_stats", stat.key) == {"date": "2024-05-15", "site": "Abidjan"}


def test_as_key_forms():
    assert as_key("stocks", "s1") == ("s1",)
    assert as_key("stocks", {"id": "s1"}) == ("s1",)
    assert as_key("stocks", ("s1",)) == ("s1",)
    with pytest.raises(ValueError):
        as_key("daily_stats", "2024-05-15")


def test_unknown_table():
    with pytest.raises(ValueError, match="Unknown table"):
        record_from_row("patients", {})


def test_stock_low_at_threshold():
    assert StockItem(quantity=50, threshold=50).is_low
    assert StockItem(quantity=45, threshold=50).is_low
    assert not StockItem(quantity=51, threshold=50).is_low


def test_label_and_detail_fallbacks():
    rec = Intervention(id="i1")
    assert rec.label == "Sans Nom"
    assert rec.detail == "-"
