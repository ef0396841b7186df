import re
from datetime import date, datetime, timedelta
from typing import Mapping, Optional, Sequence

import pandas as pd
import pytz

from physiofit.config import DEFAULT_WEEKLY_TEMPLATE, SCHEDULE_WINDOW_DAYS, STUDIO_TIMEZONE
from physiofit.models.course import Course
from physiofit.utils.locale_de import long_date_de, weekday_de

_WEEKDAY_TO_INT = {"Mon": 0, "Tue": 1, "Wed": 2, "Thu": 3, "Fri": 4, "Sat": 5, "Sun": 6}
_INT_TO_WEEKDAY = {v: k for k, v in _WEEKDAY_TO_INT.items()}
_WEEKEND = {5, 6}

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")

WeeklyTemplate = Mapping[str, Sequence[Mapping[str, str]]]


def course_id_for(day: date, time: str, name: str) -> str:
    """
    Stable id for one (date, time slot, name) triple.
    Example: (2025-01-06, "08:45–09:30", "Fle.xx") -> "2025-01-06_08450930_Flexx"
    """
    return f"{day.isoformat()}_{_NON_ALNUM.sub('', time)}_{_NON_ALNUM.sub('', name)}"


def studio_today(tz_name: str = STUDIO_TIMEZONE) -> date:
    return datetime.now(pytz.timezone(tz_name)).date()


def _as_date(reference) -> date:
    if isinstance(reference, datetime):
        return reference.date()
    if isinstance(reference, date):
        return reference
    return pd.Timestamp(reference).date()


def generate_schedule(
    weekly_template: Optional[WeeklyTemplate] = None,
    reference_date=None,
    window_days: int = SCHEDULE_WINDOW_DAYS,
) -> list[Course]:
    """
    Expand the weekly timetable into the courses of the rolling window
    [reference_date, reference_date + window_days - 1]. Weekends never
    produce courses. Pure: same inputs always give the same ids.
    """
    template = DEFAULT_WEEKLY_TEMPLATE if weekly_template is None else weekly_template
    first = _as_date(reference_date) if reference_date is not None else studio_today()
    if window_days <= 0:
        return []
    last = first + timedelta(days=window_days - 1)

    out: list[Course] = []
    for day_ts in pd.date_range(first, last, freq="D"):
        dt = day_ts.date()
        if dt.weekday() in _WEEKEND:
            continue

        entries = template.get(_INT_TO_WEEKDAY[dt.weekday()]) or []
        if not entries:
            continue

        date_display = long_date_de(dt)
        day_of_week = weekday_de(dt)
        for entry in entries:
            time = str(entry["time"]).strip()
            name = str(entry["name"]).strip()
            out.append(
                Course(
                    id=course_id_for(dt, time, name),
                    name=name,
                    time=time,
                    date=dt,
                    date_display=date_display,
                    day_of_week=day_of_week,
                )
            )
    return out
