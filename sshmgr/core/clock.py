from __future__ import annotations

import datetime as _dt
from typing import Union

DATE_FORMAT = "%Y-%m-%d"


class Clock:
    """
    Single source of "today" for every account operation.

    Dates are calendar dates in the host's local time zone, which is what
    chage(1) stores and compares against.
    """

    def today(self) -> _dt.date:
        return _dt.datetime.now().astimezone().date()


def parse_date(value: Union[str, _dt.date]) -> _dt.date:
    """Accepts a date or a YYYY-MM-DD string; raises ValueError otherwise."""
    if isinstance(value, _dt.datetime):
        raise ValueError("expected a calendar date, got a datetime")
    if isinstance(value, _dt.date):
        return value
    return _dt.datetime.strptime(str(value).strip(), DATE_FORMAT).date()


def format_date(value: _dt.date) -> str:
    return value.strftime(DATE_FORMAT)
