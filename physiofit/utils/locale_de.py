from datetime import date

WEEKDAY_NAMES_DE = ["Montag", "Dienstag", "Mittwoch", "Donnerstag", "Freitag", "Samstag", "Sonntag"]
MONTH_NAMES_DE = [
    "Januar", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
]


def weekday_de(d: date) -> str:
    return WEEKDAY_NAMES_DE[d.weekday()]


def long_date_de(d: date) -> str:
    """
    Long German date as shown on the course grid.
    Example: date(2025, 1, 6) -> "Montag, 6. Januar 2025"
    """
    return f"{weekday_de(d)}, {d.day}. {MONTH_NAMES_DE[d.month - 1]} {d.year}"
