"""
Reschedule Parser - חילוץ תאריך, חלון "מ" וחלון "אל" מהודעת לקוח

פונקציה טהורה: אין גישה ל-DB ואין שינוי מצב. "היום" מוזרק מבחוץ
כדי ש"מחר" יחושב מול אותו שעון שבו משתמשת ההעשרה.
"""
import re
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Optional

_ISO_DATE_RE = re.compile(r"\b(20\d{2})-(\d{1,2})-(\d{1,2})\b")
_EU_DATE_RE = re.compile(r"\b(\d{1,2})[/.](\d{1,2})[/.](20\d{2})\b")
_DAY_AFTER_RE = re.compile(r"\b(dopodomani|day after tomorrow)\b", re.IGNORECASE)
_TOMORROW_RE = re.compile(r"\b(tomorrow|domani)\b", re.IGNORECASE)
_TODAY_RE = re.compile(r"\b(today|oggi)\b", re.IGNORECASE)

_TIME = r"(\d{1,2})[:.](\d{2})"
_RANGE_RE = re.compile(_TIME + r"\s*(?:-|–|—)\s*" + _TIME)
_TARGET_PREFIX_RE = re.compile(r"(?:\bto|\ba|\balle|\bverso|→)\s*$", re.IGNORECASE)
_SINGLE_TARGET_RE = re.compile(
    r"(?:sposta|move|change|cambia|posticipa|anticipa|postpone).*?(?:\bto|\ba|\balle)\s+" + _TIME,
    re.IGNORECASE,
)
_SAME_PLACE_RE = re.compile(
    r"same\s+(meeting\s*)?(point|place|location|spot)|stesso\s+(punto(\s+d[i']\s*(ritrovo|incontro))?|luogo|posto)"
    r"|stessa\s+location|punto\s+d'incontro\s+uguale",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TimeWindow:
    start: time
    end: Optional[time] = None

    def label(self) -> str:
        if self.end is None:
            return self.start.strftime("%H:%M")
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


@dataclass(frozen=True)
class RescheduleRequest:
    date: Optional[date]
    from_window: Optional[TimeWindow]
    to_window: Optional[TimeWindow]
    same_meeting_point: bool

    @property
    def usable(self) -> bool:
        """מספיק נתונים כדי לחפש הזמנה קיימת"""
        return self.date is not None or self.from_window is not None


def _to_time(hours: str, minutes: str) -> Optional[time]:
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        return None
    return time(h, m)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def extract_date(text: str, today: date) -> Optional[date]:
    iso = _ISO_DATE_RE.search(text)
    if iso:
        return _safe_date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
    eu = _EU_DATE_RE.search(text)
    if eu:
        return _safe_date(int(eu.group(3)), int(eu.group(2)), int(eu.group(1)))
    # "dopodomani" מכיל את "domani", לכן נבדק קודם
    if _DAY_AFTER_RE.search(text):
        return today + timedelta(days=2)
    if _TOMORROW_RE.search(text):
        return today + timedelta(days=1)
    if _TODAY_RE.search(text):
        return today
    return None


def extract_windows(text: str) -> tuple[Optional[TimeWindow], Optional[TimeWindow]]:
    """
    מחזיר (from_window, to_window).

    שני טווחים: הראשון הוא החלון הנוכחי והשני היעד. טווח יחיד נחשב
    ליעד רק אם לפניו מילת יעד ("to", "alle"), אחרת הוא החלון הנוכחי.
    """
    windows: list[tuple[int, TimeWindow]] = []
    for match in _RANGE_RE.finditer(text):
        start = _to_time(match.group(1), match.group(2))
        end = _to_time(match.group(3), match.group(4))
        if start is not None and end is not None:
            windows.append((match.start(), TimeWindow(start, end)))

    if len(windows) >= 2:
        return windows[0][1], windows[1][1]
    if len(windows) == 1:
        position, window = windows[0]
        if _TARGET_PREFIX_RE.search(text[:position]):
            return None, window
        return window, None

    single = _SINGLE_TARGET_RE.search(text)
    if single:
        start = _to_time(single.group(1), single.group(2))
        if start is not None:
            return None, TimeWindow(start)
    return None, None


def parse_reschedule_request(text: str, today: date) -> RescheduleRequest:
    text = text or ""
    from_window, to_window = extract_windows(text)
    return RescheduleRequest(
        date=extract_date(text, today),
        from_window=from_window,
        to_window=to_window,
        same_meeting_point=bool(_SAME_PLACE_RE.search(text)),
    )
