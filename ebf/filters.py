"""
Period and site filters applied to every dated / site-scoped record.
"""

from datetime import date, timedelta
from typing import Iterable, List, Optional, TypeVar

from ebf.errors import ValidationFailure
from ebf.models import Period, Site

T = TypeVar("T")


def parse_day(date_str: Optional[str]) -> Optional[date]:
    """Calendar day of an ISO date or datetime string, None if unusable."""
    if not date_str or not isinstance(date_str, str):
        return None
    try:
        return date.fromisoformat(date_str.strip()[:10])
    except ValueError:
        return None


def week_span(today: date):
    """Monday and Friday of the working week containing *today*."""
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=4)


def matches_period(date_str: Optional[str], period: Optional[Period],
                   today: Optional[date] = None) -> bool:
    """True if the record date falls in *period*; None means no period filter."""
    if period is None:
        return True
    day = parse_day(date_str)
    if day is None:
        return False
    today = today or date.today()

    if period == Period.DAY:
        return day == today
    if period == Period.WEEK:
        if day.weekday() >= 5:
            return False
        monday, friday = week_span(today)
        return monday <= day <= friday
    if period == Period.MONTH:
        return (day.year, day.month) == (today.year, today.month)
    if period == Period.YEAR:
        return day.year == today.year
    return True


def matches_site(record_site: Optional[str], selected_site: Optional[str]) -> bool:
    """Global (or no selection) matches everything, else exact equality."""
    if selected_site is None or selected_site == Site.GLOBAL:
        return True
    if record_site is None:
        return False
    return record_site == selected_site


def filter_records(records: Iterable[T], site: Optional[str] = None,
                   period: Optional[Period] = None,
                   today: Optional[date] = None) -> List[T]:
    """
    List-view filtering: the site filter only applies to records carrying a
    site, the period filter only to records carrying a date.
    """
    out = []
    for rec in records:
        rec_site = getattr(rec, "site", None)
        if rec_site and not matches_site(rec_site, site):
            continue
        rec_date = getattr(rec, "date", None)
        if rec_date and not matches_period(rec_date, period, today):
            continue
        out.append(rec)
    return out


def filter_strict(records: Iterable[T], site: Optional[str] = None,
                  period: Optional[Period] = None,
                  today: Optional[date] = None) -> List[T]:
    """Dashboard filtering: every record must match both site and period."""
    return [
        rec for rec in records
        if matches_site(getattr(rec, "site", None), site)
        and matches_period(getattr(rec, "date", None), period, today)
    ]


ALL_TECHNICIANS = "All"


def _bound(value, field: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    day = parse_day(value)
    if day is None:
        raise ValidationFailure(f"Date invalide {value!r} (AAAA-MM-JJ).", field)
    return day


def filter_reports(reports: Iterable[T], site: Optional[str] = None,
                   period: Optional[Period] = None,
                   technician: Optional[str] = None,
                   start=None, end=None,
                   today: Optional[date] = None) -> List[T]:
    """
    Report synthesis filtering. A start and/or end day (inclusive) replaces
    the period filter; a technician name keeps only that author's reports.
    """
    first, last = _bound(start, "start"), _bound(end, "end")
    custom_range = first is not None or last is not None
    if technician == ALL_TECHNICIANS:
        technician = None

    out = []
    for rec in reports:
        if not matches_site(getattr(rec, "site", None), site):
            continue
        rec_date = getattr(rec, "date", None)
        if custom_range:
            day = parse_day(rec_date)
            if day is None or (first and day < first) or (last and day > last):
                continue
        elif not matches_period(rec_date, period, today):
            continue
        if technician and getattr(rec, "technician_name", None) != technician:
            continue
        out.append(rec)
    return out
