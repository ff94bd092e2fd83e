"""
Heuristic quirk detection over documentation Markdown and extracted endpoints.

A quirk is a formatting irregularity a client has to handle (amounts in minor
units, epoch timestamps, cursor pagination, form-encoded bodies, ...). Each
detector scans documentation line by line; the field name is taken from the
first `backticked` identifier on the matching line when there is one.
Extend DETECTORS with project-specific rules where needed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .models import ApiDoc


@dataclass
class DetectedQuirk:
    quirk_type: str
    severity: str
    description: str
    kind: str  # detector name; quirks are de-duplicated on (quirk_type, field_name, kind)
    field_name: Optional[str] = None
    conversion_function: Optional[str] = None
    conversion_language: str = "python"
    example_input: Optional[str] = None
    example_output: Optional[str] = None
    discovered_by: str = "auto"
    evidence: Optional[str] = None


MINOR_UNITS_FN = '''from decimal import Decimal

def to_major_units(amount: int, exponent: int = 2) -> Decimal:
    """1999 -> Decimal('19.99'); zero-decimal currencies (JPY) use exponent=0."""
    return Decimal(amount).scaleb(-exponent)
'''

EPOCH_SECONDS_FN = '''from datetime import datetime, timezone

def from_epoch_seconds(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)
'''

EPOCH_MILLIS_FN = '''from datetime import datetime, timezone

def from_epoch_millis(ts: int) -> datetime:
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
'''

DATE_FORMAT_FN = '''from datetime import datetime

def parse_api_date(value: str, fmt: str = "{fmt}") -> datetime:
    return datetime.strptime(value, fmt)
'''

LOCAL_TIME_FN = '''from datetime import datetime
from zoneinfo import ZoneInfo

def to_utc(value: str, tz: str = "{tz}") -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=ZoneInfo(tz)).astimezone(ZoneInfo("UTC"))
'''

CURSOR_PAGINATION_FN = '''def iter_pages(fetch, cursor_param: str = "{param}"):
    """fetch(params) returns (items, next_cursor); stops when next_cursor is falsy."""
    params = {{}}
    while True:
        items, next_cursor = fetch(params)
        yield from items
        if not next_cursor:
            break
        params[cursor_param] = next_cursor
'''

OFFSET_PAGINATION_FN = '''def iter_pages(fetch, limit: int = 100):
    """fetch(offset, limit) returns a list; stops on a short page."""
    offset = 0
    while True:
        items = fetch(offset, limit)
        yield from items
        if len(items) < limit:
            break
        offset += limit
'''

PAGE_PAGINATION_FN = '''def iter_pages(fetch, per_page: int = 100):
    """fetch(page, per_page) returns a list; pages start at 1."""
    page = 1
    while True:
        items = fetch(page, per_page)
        yield from items
        if len(items) < per_page:
            break
        page += 1
'''

THROTTLE_FN = '''import time

class Throttle:
    """Allow at most `limit` calls per `period_s` seconds."""

    def __init__(self, limit: int = {limit}, period_s: float = {period_s}):
        self.interval = period_s / limit
        self._last = 0.0

    def wait(self) -> None:
        delay = self._last + self.interval - time.monotonic()
        if delay > 0:
            time.sleep(delay)
        self._last = time.monotonic()
'''

FORM_ENCODING_FN = '''import requests

def post_form(url: str, fields: dict, **kwargs) -> requests.Response:
    # data= sends application/x-www-form-urlencoded; json= would be rejected
    return requests.post(url, data=fields, **kwargs)
'''

STRING_NUMBER_FN = '''from decimal import Decimal

def parse_number(value: str) -> Decimal:
    return Decimal(value)
'''

STRING_BOOL_FN = '''def parse_bool(value) -> bool:
    return str(value).strip().lower() in {"true", "1", "yes"}
'''

ENVELOPE_FN = '''def unwrap(payload: dict, key: str = "{key}"):
    return payload.get(key, payload)
'''

PERIOD_ALIASES = {
    "s": "second", "sec": "second", "second": "second",
    "min": "minute", "minute": "minute",
    "h": "hour", "hr": "hour", "hour": "hour",
    "day": "day", "d": "day",
    "month": "month", "mo": "month",
}
PERIOD_SECONDS = {"second": 1, "minute": 60, "hour": 3600, "day": 86400, "month": 2592000}

RATE_LIMIT_RE = re.compile(
    r"(\d[\d,]*)\s*(?:api\s+)?(?:requests?|calls?|req)(?:\s*/\s*|\s+(?:per|an?|each|every)\s+)"
    r"(second|sec|s|minute|min|hour|hr|h|day|d|month|mo)\b",
    re.IGNORECASE,
)
FIELD_RE = re.compile(r"`([A-Za-z_][\w.\[\]]*)`")


def _field(line: str) -> Optional[str]:
    m = FIELD_RE.search(line)
    return m.group(1) if m else None


def parse_rate_limit(text: str) -> Optional[Tuple[int, str]]:
    """First "N requests per <period>" in text, as (N, period)."""
    m = RATE_LIMIT_RE.search(text)
    if not m:
        return None
    return int(m.group(1).replace(",", "")), PERIOD_ALIASES[m.group(2).lower()]


# ---- quirk constructors ----

def minor_units_quirk(field_name: Optional[str] = None) -> DetectedQuirk:
    return DetectedQuirk(
        quirk_type="currency",
        severity="high",
        kind="minor_units",
        field_name=field_name,
        description="Monetary amounts are integers in the currency's minor unit (e.g. cents)",
        conversion_function=MINOR_UNITS_FN,
        example_input="1999",
        example_output="19.99",
    )


def epoch_quirk(millis: bool, field_name: Optional[str] = None) -> DetectedQuirk:
    if millis:
        return DetectedQuirk(
            quirk_type="time",
            severity="medium",
            kind="epoch_millis",
            field_name=field_name,
            description="Timestamps are Unix epoch milliseconds",
            conversion_function=EPOCH_MILLIS_FN,
            example_input="1700000000000",
            example_output="2023-11-14T22:13:20+00:00",
        )
    return DetectedQuirk(
        quirk_type="time",
        severity="medium",
        kind="epoch_seconds",
        field_name=field_name,
        description="Timestamps are Unix epoch seconds rather than ISO 8601 strings",
        conversion_function=EPOCH_SECONDS_FN,
        example_input="1700000000",
        example_output="2023-11-14T22:13:20+00:00",
    )


def pagination_quirk(style: str, param: Optional[str] = None) -> DetectedQuirk:
    if style == "cursor":
        param = param or "cursor"
        return DetectedQuirk(
            quirk_type="pagination",
            severity="low",
            kind="cursor",
            field_name=param,
            description=f"Cursor-based pagination via `{param}`",
            conversion_function=CURSOR_PAGINATION_FN.format(param=param),
        )
    if style == "offset":
        return DetectedQuirk(
            quirk_type="pagination",
            severity="low",
            kind="offset",
            field_name="offset",
            description="Offset/limit pagination",
            conversion_function=OFFSET_PAGINATION_FN,
        )
    return DetectedQuirk(
        quirk_type="pagination",
        severity="low",
        kind="page",
        field_name="page",
        description="Page-number pagination",
        conversion_function=PAGE_PAGINATION_FN,
    )


# ---- line detectors: (line) -> DetectedQuirk | None ----

def _minor_units(line: str) -> Optional[DetectedQuirk]:
    if not re.search(
        r"\b(?:in\s+cents|smallest\s+currency\s+unit|minor\s+units?|in\s+pence|lowest\s+denomination)\b",
        line,
        re.IGNORECASE,
    ):
        return None
    return minor_units_quirk(_field(line))


def _epoch_millis(line: str) -> Optional[DetectedQuirk]:
    if not re.search(
        r"\b(?:milliseconds?\s+since\s+(?:the\s+)?(?:unix\s+)?epoch|(?:unix\s+|epoch\s+)?timestamps?\s+in\s+milliseconds|epoch\s+millis)",
        line,
        re.IGNORECASE,
    ):
        return None
    return epoch_quirk(True, _field(line))


def _epoch_seconds(line: str) -> Optional[DetectedQuirk]:
    if re.search(r"millisecond|epoch\s+millis", line, re.IGNORECASE):
        return None
    if not re.search(
        r"\b(?:unix\s+time(?:stamps?)?|seconds\s+since\s+(?:the\s+)?(?:unix\s+)?epoch|epoch\s+seconds|posix\s+time)\b",
        line,
        re.IGNORECASE,
    ):
        return None
    return epoch_quirk(False, _field(line))


DATE_FORMATS = {
    "DD/MM/YYYY": "%d/%m/%Y",
    "MM/DD/YYYY": "%m/%d/%Y",
    "DD-MM-YYYY": "%d-%m-%Y",
    "YYYYMMDD": "%Y%m%d",
    "DD.MM.YYYY": "%d.%m.%Y",
}


def _date_format(line: str) -> Optional[DetectedQuirk]:
    for shown, fmt in DATE_FORMATS.items():
        if shown in line.upper():
            example_in = {
                "%d/%m/%Y": "14/11/2023",
                "%m/%d/%Y": "11/14/2023",
                "%d-%m-%Y": "14-11-2023",
                "%Y%m%d": "20231114",
                "%d.%m.%Y": "14.11.2023",
            }[fmt]
            return DetectedQuirk(
                quirk_type="time",
                severity="high" if shown in ("DD/MM/YYYY", "MM/DD/YYYY") else "medium",
                kind=f"date_format:{shown}",
                field_name=_field(line),
                description=f"Dates use the non-ISO format {shown}",
                conversion_function=DATE_FORMAT_FN.format(fmt=fmt),
                example_input=example_in,
                example_output="2023-11-14",
            )
    return None


TIMEZONES = {
    "pacific time": "America/Los_Angeles",
    "pst": "America/Los_Angeles",
    "eastern time": "America/New_York",
    "est": "America/New_York",
    "central european time": "Europe/Berlin",
    "cet": "Europe/Berlin",
}


def _local_time(line: str) -> Optional[DetectedQuirk]:
    m = re.search(
        r"\b(?:in|are|uses?)\s+(pacific time|pst|eastern time|est|central european time|cet)\b",
        line,
        re.IGNORECASE,
    )
    if not m:
        return None
    tz = TIMEZONES[m.group(1).lower()]
    return DetectedQuirk(
        quirk_type="time",
        severity="high",
        kind="local_time",
        field_name=_field(line),
        description=f"Times are given in {m.group(1)} ({tz}), not UTC",
        conversion_function=LOCAL_TIME_FN.format(tz=tz),
        example_input="2023-11-14T14:13:20",
        example_output="2023-11-14T22:13:20+00:00",
    )


CURSOR_PARAMS = ("starting_after", "next_cursor", "page_token", "pagetoken", "cursor")


def _pagination(line: str) -> Optional[DetectedQuirk]:
    lowered = line.lower()
    for param in CURSOR_PARAMS:
        if re.search(rf"\b{param}\b", lowered):
            return pagination_quirk("cursor", param)
    if re.search(r"\boffset\b", lowered) and re.search(r"\blimit\b", lowered):
        return pagination_quirk("offset")
    if re.search(r"\bper_page\b|\bpage_size\b|\bpage=\d", lowered):
        return pagination_quirk("page")
    return None


def _rate_limit(line: str) -> Optional[DetectedQuirk]:
    found = parse_rate_limit(line)
    if not found:
        return None
    limit, period = found
    return DetectedQuirk(
        quirk_type="rate_limit",
        severity="medium",
        kind="rate_limit",
        description=f"Rate limited to {limit} requests per {period}",
        conversion_function=THROTTLE_FN.format(limit=limit, period_s=float(PERIOD_SECONDS[period])),
        example_input=f"{limit + 1} requests within one {period}",
        example_output="HTTP 429 Too Many Requests",
    )


def _form_encoding(line: str) -> Optional[DetectedQuirk]:
    if "application/x-www-form-urlencoded" not in line.lower() and not re.search(
        r"\bform[- ]encoded\b", line, re.IGNORECASE
    ):
        return None
    return DetectedQuirk(
        quirk_type="encoding",
        severity="medium",
        kind="form_encoded",
        description="Request bodies are form-encoded, not JSON",
        conversion_function=FORM_ENCODING_FN,
        example_input='{"amount": 1999}',
        example_output="amount=1999",
    )


def _string_numbers(line: str) -> Optional[DetectedQuirk]:
    if not re.search(
        r"\b(?:numbers?|numeric|decimals?|amounts?|prices?|balances?)\b[^.]{0,60}\b(?:returned|encoded|represented|sent)\s+as\s+(?:a\s+)?strings?\b",
        line,
        re.IGNORECASE,
    ):
        return None
    return DetectedQuirk(
        quirk_type="encoding",
        severity="medium",
        kind="string_numbers",
        field_name=_field(line),
        description="Numeric values are encoded as JSON strings",
        conversion_function=STRING_NUMBER_FN,
        example_input='"12.50"',
        example_output="Decimal('12.50')",
    )


def _string_booleans(line: str) -> Optional[DetectedQuirk]:
    if not re.search(
        r"\bbooleans?\b[^.]{0,60}\b(?:returned|encoded|represented|sent)\s+as\s+(?:strings?|\"?true\"?/\"?false\"?|0\s*(?:or|/)\s*1|1\s*(?:or|/)\s*0)",
        line,
        re.IGNORECASE,
    ):
        return None
    return DetectedQuirk(
        quirk_type="encoding",
        severity="low",
        kind="string_booleans",
        field_name=_field(line),
        description="Booleans are encoded as strings or 0/1",
        conversion_function=STRING_BOOL_FN,
        example_input='"true"',
        example_output="True",
    )


def _envelope(line: str) -> Optional[DetectedQuirk]:
    m = re.search(
        r"\b(?:responses?|results?)\s+(?:are|is)\s+(?:always\s+)?wrapped\s+in\s+(?:an?\s+|the\s+)?`?(\w+)`?",
        line,
        re.IGNORECASE,
    )
    if not m:
        return None
    key = m.group(1)
    if key.lower() in {"object", "json", "envelope"}:
        key = _field(line) or "data"
    return DetectedQuirk(
        quirk_type="custom",
        severity="low",
        kind="envelope",
        field_name=key,
        description=f"Response payloads are wrapped in a `{key}` envelope",
        conversion_function=ENVELOPE_FN.format(key=key),
        example_input=f'{{"{key}": {{"id": 1}}}}',
        example_output='{"id": 1}',
    )


DETECTORS: List[Callable[[str], Optional[DetectedQuirk]]] = [
    _minor_units,
    _epoch_millis,
    _epoch_seconds,
    _date_format,
    _local_time,
    _pagination,
    _rate_limit,
    _form_encoding,
    _string_numbers,
    _string_booleans,
    _envelope,
]


def _dedupe(found: Iterable[DetectedQuirk]) -> List[DetectedQuirk]:
    out: Dict[Tuple[str, Optional[str], str], DetectedQuirk] = {}
    for q in found:
        out.setdefault((q.quirk_type, q.field_name, q.kind), q)
    return list(out.values())


def detect_in_text(text: str) -> List[DetectedQuirk]:
    found: List[DetectedQuirk] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        for detector in DETECTORS:
            q = detector(line)
            if q is not None:
                q.evidence = line[:300]
                found.append(q)
    return _dedupe(found)


def detect_in_doc(doc: ApiDoc) -> List[DetectedQuirk]:
    """Quirks implied by the extracted parameters and endpoint metadata themselves."""
    found: List[DetectedQuirk] = []
    for ep in doc.endpoints:
        for p in ep.parameters:
            desc = p.description or ""
            name = p.name.lower()
            q: Optional[DetectedQuirk] = None
            if p.data_type == "integer" and (
                name.endswith("_cents") or re.search(r"\b(?:cents|minor units?|smallest currency unit)\b", desc, re.I)
            ):
                q = minor_units_quirk(p.name)
            elif (
                p.data_type == "integer"
                and (name.endswith("_at") or name in {"created", "updated", "timestamp"})
                and re.search(r"\b(?:unix|epoch|timestamp)\b", desc, re.I)
            ):
                q = epoch_quirk(bool(re.search(r"millisecond", desc, re.I)), p.name)
            if q is not None:
                q.evidence = f"{ep.method} {ep.path} {p.name}: {desc}"[:300]
                found.append(q)
        if ep.pagination_type in ("cursor", "offset", "page"):
            cursor_param = next((p.name for p in ep.parameters if p.name.lower() in CURSOR_PARAMS), None)
            q = pagination_quirk(ep.pagination_type, cursor_param)
            q.evidence = f"{ep.method} {ep.path}"
            found.append(q)
    return _dedupe(found)


def detect_quirks(text: str = "", doc: Optional[ApiDoc] = None) -> List[DetectedQuirk]:
    found = detect_in_text(text) if text else []
    if doc is not None:
        found.extend(detect_in_doc(doc))
    return _dedupe(found)
