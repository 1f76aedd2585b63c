from typing import Iterable, Optional

# statuses that count as attending
ATTENDED = ("present", "late")


def attendance_rate(records: Iterable) -> float:
    """Percentage of attendance rows marked present or late, to one decimal.

    0.0 when there are no rows.
    """
    total = attended = 0
    for record in records:
        total += 1
        if record.status in ATTENDED:
            attended += 1
    if total == 0:
        return 0.0
    return round(attended / total * 100, 1)


def percentage(score: float, max_score: float) -> Optional[float]:
    if not max_score:
        return None
    return score / max_score * 100


def percentage_to_gpa(pct: float) -> float:
    """Map an average percentage onto an approximate 4.0 scale."""
    if pct >= 90:
        gpa = 4.0
    elif pct >= 80:
        gpa = 3.0 + (pct - 80) / 10
    elif pct >= 70:
        gpa = 2.0 + (pct - 70) / 10
    elif pct >= 60:
        gpa = 1.0 + (pct - 60) / 10
    else:
        gpa = 0.0
    return round(gpa, 1)


def average_percentage(grades: Iterable) -> Optional[float]:
    """Mean of score/maxScore over the grades; grades out of 0 are skipped."""
    values = [p for p in (percentage(g.score, g.max_score) for g in grades) if p is not None]
    if not values:
        return None
    return sum(values) / len(values)


def grade_point_average(grades: Iterable) -> Optional[float]:
    avg = average_percentage(grades)
    if avg is None:
        return None
    return percentage_to_gpa(avg)
