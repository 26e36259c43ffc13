"""Parse free-form event date text into UTC intervals.

Listings from venue and government sites describe dates in many shapes
("Sep 5-28", "Sep 6, 13, 20, Oct 1 & 6", "27–28 September 2025",
"15 March 2024, 8:00 PM", "2025年9月27日", "Tomorrow"). Each pattern family
below is tried in order and the first one that resolves wins. All arithmetic
happens in the source's civil timezone; values are converted to UTC only on
output. Text that matches no family yields an empty ``ParsedInterval``,
never a guessed value.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from processor.models import ParsedInterval

logger = logging.getLogger(__name__)

DEFAULT_DURATION = timedelta(hours=2)
RANGE_ROLLOVER_DAYS = 60
SINGLE_ROLLOVER_DAYS = 30

MONTHS = {
    'jan': 1, 'january': 1, 'janeiro': 1,
    'feb': 2, 'february': 2, 'fevereiro': 2,
    'mar': 3, 'march': 3, 'março': 3, 'marco': 3,
    'apr': 4, 'april': 4, 'abril': 4,
    'may': 5, 'maio': 5,
    'jun': 6, 'june': 6, 'junho': 6,
    'jul': 7, 'july': 7, 'julho': 7,
    'aug': 8, 'august': 8, 'agosto': 8,
    'sep': 9, 'sept': 9, 'september': 9, 'setembro': 9,
    'oct': 10, 'october': 10, 'outubro': 10,
    'nov': 11, 'november': 11, 'novembro': 11,
    'dec': 12, 'december': 12, 'dezembro': 12,
}

_MONTH = r'([A-Za-zç]+)\.?'
_ORD = r'(?:st|nd|rd|th)?'
_DASH = r'\s*[-–—]\s*'

ABBR_RANGE_RE = re.compile(rf'^{_MONTH}\s+(\d{{1,2}}){_DASH}(\d{{1,2}})$', re.IGNORECASE)
MULTI_DATE_RE = re.compile(
    rf'^{_MONTH}\s+([\d\s,&]+?)(?:,?\s*(?:and\s+)?{_MONTH}\s+([\d\s,&]+))?$',
    re.IGNORECASE
)
DAY_RANGE_YEAR_RE = re.compile(rf'(?<!\d)(\d{{1,2}}){_ORD}{_DASH}(\d{{1,2}}){_ORD}\s+{_MONTH},?\s+(\d{{4}})', re.IGNORECASE)
MONTH_DAY_RANGE_YEAR_RE = re.compile(rf'{_MONTH}\s+(\d{{1,2}}){_DASH}(\d{{1,2}}),?\s+(\d{{4}})', re.IGNORECASE)
DMY_RE = re.compile(rf'(?<!\d)(\d{{1,2}}){_ORD}\s+{_MONTH},?\s+(\d{{4}})', re.IGNORECASE)
MDY_RE = re.compile(rf'{_MONTH}\s+(\d{{1,2}}){_ORD},?\s+(\d{{4}})', re.IGNORECASE)
DM_RE = re.compile(rf'(?<!\d)(\d{{1,2}}){_ORD}\s+{_MONTH}(?!\w)(?!,?\s*\d{{4}})', re.IGNORECASE)
MD_RE = re.compile(rf'(?<!\w){_MONTH}\s+(\d{{1,2}}){_ORD}(?!\d)(?!,?\s*\d{{4}})', re.IGNORECASE)
ISO_RE = re.compile(r'(\d{4})-(\d{1,2})-(\d{1,2})')
DMY_SLASH_RE = re.compile(r'(\d{1,2})/(\d{1,2})/(\d{4})')
CJK_RE = re.compile(r'(?:(\d{4})\s*年\s*)?(\d{1,2})\s*月\s*(\d{1,2})\s*日')
TIME_RE = re.compile(r'(\d{1,2}):(\d{2})(?:\s*([ap])\.?m\.?(?![a-z]))?', re.IGNORECASE)
HOUR_ONLY_RE = re.compile(r'(?<![\d:])(\d{1,2})\s*([ap])\.?m\.?(?![a-z])', re.IGNORECASE)


def clean_date_text(text: str) -> str:
    """Strip labels and parenthetical weekdays, collapse whitespace."""
    cleaned = re.sub(r'^\s*(date|time|when)\s*:\s*', '', text, flags=re.IGNORECASE)
    cleaned = re.sub(r'\s*[(（][^)）]*[)）]', '', cleaned)
    return re.sub(r'\s+', ' ', cleaned).strip()


def month_number(token: str) -> Optional[int]:
    return MONTHS.get(token.lower().rstrip('.'))


def format_utc(value: Optional[datetime]) -> Optional[str]:
    """Format an aware datetime as a second-precision UTC ISO string."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_utc(value: Optional[str]) -> Optional[datetime]:
    """Inverse of ``format_utc``."""
    if not value:
        return None
    return datetime.strptime(value, '%Y-%m-%dT%H:%M:%SZ').replace(tzinfo=timezone.utc)


def parse_date_interval(
    text: Optional[str],
    source_timezone: str,
    now: Optional[datetime] = None
) -> ParsedInterval:
    """
    Resolve date text to a UTC interval.

    Args:
        text: Raw date text from a listing
        source_timezone: IANA timezone the listing's dates are written in
        now: Reference instant (defaults to the current time)

    Returns:
        ParsedInterval with UTC datetimes, or an empty interval when no
        pattern family matched
    """
    if not text or not text.strip():
        return ParsedInterval()

    tz = ZoneInfo(source_timezone)
    now_local = (now or datetime.now(timezone.utc)).astimezone(tz)
    cleaned = clean_date_text(text)

    for family in (_abbreviated_range, _multi_date, _day_range_with_year):
        interval = family(cleaned, tz, now_local)
        if interval:
            return _to_utc(*interval)

    single = _single_date(cleaned, tz, now_local)
    if single:
        single = _merge_time(cleaned, single)
        return _to_utc(single, single + DEFAULT_DURATION)

    relative = _relative_date(cleaned, now_local)
    if relative:
        return _to_utc(relative, relative + DEFAULT_DURATION)

    logger.debug(f"No date pattern matched: '{cleaned}'")
    return ParsedInterval()


def parse_end_boundary(
    text: Optional[str],
    source_timezone: str,
    now: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Resolve free-form end-date text to an exclusive UTC end instant.

    A range ends where the range ends. A bare date covers its whole day, so
    it ends at the next local midnight; a date with a time of day ends at
    that time.
    """
    interval = parse_date_interval(text, source_timezone, now)
    if interval.start is None:
        return None
    if interval.end - interval.start != DEFAULT_DURATION:
        return interval.end
    if _has_time_of_day(clean_date_text(text)):
        return interval.start
    local_start = interval.start.astimezone(ZoneInfo(source_timezone))
    return (local_start + timedelta(days=1)).astimezone(timezone.utc)


def _has_time_of_day(text: str) -> bool:
    return bool(TIME_RE.search(text) or HOUR_ONLY_RE.search(text))


def _to_utc(start: datetime, end: datetime) -> ParsedInterval:
    return ParsedInterval(
        start=start.astimezone(timezone.utc),
        end=end.astimezone(timezone.utc)
    )


def _local_date(year: int, month: int, day: int, tz: ZoneInfo) -> Optional[datetime]:
    try:
        return datetime(year, month, day, tzinfo=tz)
    except ValueError:
        return None


def _infer_year(month: int, day: int, tz: ZoneInfo, now_local: datetime,
                rollover_days: int) -> Optional[datetime]:
    """Resolve in the current year, or the next one if too far in the past."""
    resolved = _local_date(now_local.year, month, day, tz)
    if resolved and resolved < now_local - timedelta(days=rollover_days):
        resolved = _local_date(now_local.year + 1, month, day, tz)
    return resolved


def _abbreviated_range(text: str, tz: ZoneInfo,
                       now_local: datetime) -> Optional[Tuple[datetime, datetime]]:
    """'Sep 5-28'."""
    match = ABBR_RANGE_RE.match(text)
    if not match:
        return None
    month = month_number(match.group(1))
    if not month:
        return None
    start_day, end_day = int(match.group(2)), int(match.group(3))

    start = _local_date(now_local.year, month, start_day, tz)
    end = _local_date(now_local.year, month, end_day, tz)
    if start and start < now_local - timedelta(days=RANGE_ROLLOVER_DAYS):
        start = _local_date(now_local.year + 1, month, start_day, tz)
        end = _local_date(now_local.year + 1, month, end_day, tz)
    if not start or not end or end < start:
        return None
    return start, end + timedelta(days=1)


def _multi_date(text: str, tz: ZoneInfo,
                now_local: datetime) -> Optional[Tuple[datetime, datetime]]:
    """'Sep 6, 13, 20, Oct 1 & 6'."""
    match = MULTI_DATE_RE.match(text)
    if not match:
        return None

    pairs: List[Tuple[int, int]] = []
    for month_token, days in ((match.group(1), match.group(2)), (match.group(3), match.group(4))):
        if not month_token:
            continue
        month = month_number(month_token)
        if not month:
            return None
        numbers = [int(d) for d in re.findall(r'\d+', days or '')]
        if any(n > 31 for n in numbers):
            return None
        pairs.extend((month, n) for n in numbers)

    if len(pairs) < 2:
        return None

    dates = sorted(
        d for d in (_infer_year(m, d, tz, now_local, RANGE_ROLLOVER_DAYS) for m, d in pairs)
        if d is not None
    )
    if not dates:
        return None
    return dates[0], dates[-1] + timedelta(days=1)


def _day_range_with_year(text: str, tz: ZoneInfo,
                         now_local: datetime) -> Optional[Tuple[datetime, datetime]]:
    """'27–28 September 2025' or 'September 27-28, 2025'."""
    candidates = [
        (m.group(1), m.group(2), m.group(3), m.group(4)) for m in DAY_RANGE_YEAR_RE.finditer(text)
    ] + [
        (m.group(2), m.group(3), m.group(1), m.group(4)) for m in MONTH_DAY_RANGE_YEAR_RE.finditer(text)
    ]
    for start_day, end_day, month_token, year in candidates:
        month = month_number(month_token)
        if not month:
            continue
        start = _local_date(int(year), month, int(start_day), tz)
        end = _local_date(int(year), month, int(end_day), tz)
        if start and end and end >= start:
            return start, end + timedelta(days=1)
    return None


def _first_valid(matches: Iterable[re.Match], resolve) -> Optional[datetime]:
    for match in matches:
        resolved = resolve(match)
        if resolved:
            return resolved
    return None


def _single_date(text: str, tz: ZoneInfo, now_local: datetime) -> Optional[datetime]:
    def dmy(m):
        month = month_number(m.group(2))
        return month and _local_date(int(m.group(3)), month, int(m.group(1)), tz)

    def mdy(m):
        month = month_number(m.group(1))
        return month and _local_date(int(m.group(3)), month, int(m.group(2)), tz)

    def dm(m):
        month = month_number(m.group(2))
        return month and _infer_year(month, int(m.group(1)), tz, now_local, SINGLE_ROLLOVER_DAYS)

    def md(m):
        month = month_number(m.group(1))
        return month and _infer_year(month, int(m.group(2)), tz, now_local, SINGLE_ROLLOVER_DAYS)

    def iso(m):
        return _local_date(int(m.group(1)), int(m.group(2)), int(m.group(3)), tz)

    def dmy_slash(m):
        return _local_date(int(m.group(3)), int(m.group(2)), int(m.group(1)), tz)

    def cjk(m):
        month, day = int(m.group(2)), int(m.group(3))
        if m.group(1):
            return _local_date(int(m.group(1)), month, day, tz)
        return _infer_year(month, day, tz, now_local, SINGLE_ROLLOVER_DAYS)

    for pattern, resolve in (
        (DMY_RE, dmy),
        (MDY_RE, mdy),
        (DM_RE, dm),
        (MD_RE, md),
        (ISO_RE, iso),
        (DMY_SLASH_RE, dmy_slash),
        (CJK_RE, cjk),
    ):
        resolved = _first_valid(pattern.finditer(text), resolve)
        if resolved:
            return resolved
    return None


def _merge_time(text: str, date_value: datetime) -> datetime:
    """Apply a trailing time of day ('8:00 PM', '20:00', '8pm') if present."""
    match = TIME_RE.search(text)
    if match:
        hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    else:
        match = HOUR_ONLY_RE.search(text)
        if not match:
            return date_value
        hour, minute, meridiem = int(match.group(1)), 0, match.group(2)

    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == 'p' and hour != 12:
            hour += 12
        elif meridiem == 'a' and hour == 12:
            hour = 0
    if hour > 23 or minute > 59:
        return date_value
    return date_value.replace(hour=hour, minute=minute)


def _relative_date(text: str, now_local: datetime) -> Optional[datetime]:
    lowered = text.lower()
    today = now_local.replace(hour=0, minute=0, second=0, microsecond=0)
    if 'tomorrow' in lowered or '明日' in text or '明天' in text:
        return today + timedelta(days=1)
    if 'today' in lowered or 'tonight' in lowered or '今日' in text or '今天' in text:
        return today
    return None
