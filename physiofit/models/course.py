from dataclasses import dataclass
from datetime import date


# -----------------------------
# Data model
# -----------------------------
@dataclass(frozen=True)
class Course:
    """One bookable class occurrence on a given day."""

    id: str                      # 2025-01-06_08450930_Flexx
    name: str
    time: str                    # display range, e.g. 08:45–09:30
    date: date
    date_display: str            # Montag, 6. Januar 2025
    day_of_week: str             # Montag
