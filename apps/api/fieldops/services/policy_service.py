"""Policy service - operator-editable business policy snapshots.

Policy documents live in ``policy_settings`` (one JSON document per key).
Decision code never reads the table directly: callers load a
``PolicySnapshot`` once per request/job invocation and pass it down, so gate
evaluation is deterministic for the duration of that invocation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from fieldops.core.config import settings
from fieldops.db.models import PolicySetting
from fieldops.utils.normalization import normalize_postal_code

logger = logging.getLogger(__name__)


AUTOPILOT_KEY = "sales_autopilot"
BOOKING_RULES_KEY = "booking_rules"
BUSINESS_HOURS_KEY = "business_hours"
COMPANY_PROFILE_KEY = "company_profile"
SERVICE_AREA_KEY = "service_area"

POLICY_KEYS = (
    AUTOPILOT_KEY,
    BOOKING_RULES_KEY,
    BUSINESS_HOURS_KEY,
    COMPANY_PROFILE_KEY,
    SERVICE_AREA_KEY,
)

WEEKDAY_KEYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


# =============================================================================
# Snapshot types
# =============================================================================


@dataclass(frozen=True)
class AutopilotPolicy:
    enabled: bool = True
    auto_send_after_minutes: int = 15
    activity_window_minutes: int = 14
    retry_delay_minutes: int = 2
    dm_sms_fallback_after_minutes: int = 30
    dm_min_silence_before_sms_minutes: int = 10
    agent_display_name: str = "Devon"


@dataclass(frozen=True)
class TimeWindow:
    start: time
    end: time


def _default_weekly() -> dict[int, tuple[TimeWindow, ...]]:
    weekday = (TimeWindow(time(8, 0), time(18, 0)),)
    return {
        0: weekday,
        1: weekday,
        2: weekday,
        3: weekday,
        4: weekday,
        5: (TimeWindow(time(9, 0), time(14, 0)),),
        6: (),
    }


@dataclass(frozen=True)
class BusinessHoursPolicy:
    timezone: str = field(default_factory=lambda: settings.APPOINTMENT_TIMEZONE)
    # Keyed by datetime.weekday() (0 = Monday)
    weekly: dict[int, tuple[TimeWindow, ...]] = field(default_factory=_default_weekly)

    @property
    def tz(self) -> ZoneInfo:
        return get_timezone(self.timezone)

    @property
    def service_days(self) -> frozenset[int]:
        return frozenset(day for day, windows in self.weekly.items() if windows)

    def windows_for(self, local_day: datetime) -> list[tuple[datetime, datetime]]:
        """Business windows for the local calendar day of ``local_day``."""
        windows = []
        for window in self.weekly.get(local_day.weekday(), ()):
            start = local_day.replace(
                hour=window.start.hour, minute=window.start.minute, second=0, microsecond=0
            )
            end = local_day.replace(
                hour=window.end.hour, minute=window.end.minute, second=0, microsecond=0
            )
            if end > start:
                windows.append((start, end))
        return windows

    def contains(self, start_at: datetime, duration_minutes: int) -> bool:
        """True when [start, start+duration) sits inside one business window."""
        start_local = start_at.astimezone(self.tz)
        end_local = start_local + timedelta(minutes=duration_minutes)
        return any(
            start_local >= w_start and end_local <= w_end
            for w_start, w_end in self.windows_for(start_local)
        )


@dataclass(frozen=True)
class BookingPolicy:
    capacity: int = 2  # concurrent appointments + holds per overlapping window
    hold_minutes: int = 15
    booking_window_days: int = 30
    buffer_minutes: int = 30
    max_jobs_per_day: int = 6
    closed_on_holidays: bool = False


@dataclass(frozen=True)
class CompanyProfile:
    business_name: str = "Stonegate Junk Removal"
    primary_phone: str = "(404) 777-2631"
    service_area_summary: str = (
        "North Metro Atlanta within about 50 miles of Woodstock, Georgia (ZIP allowlist)."
    )
    pricing_summary: str = (
        "We use a 7x16x4 dump trailer. Pricing is strictly based on trailer volume in "
        "quarter trailer increments. Photos help us estimate quickly."
    )
    what_we_do: str = "Junk removal and hauling for household and light commercial items."
    what_we_dont_do: str = (
        "We do not service out of area locations. We do not take hazmat, oils, or paints. "
        "Ask if unsure."
    )
    booking_style: str = (
        "Offer 2 concrete options and move to booking. Ask for ZIP, item details, and "
        "preferred timing. If photos are available, request them."
    )
    agent_notes: str = (
        "Keep replies short, friendly, and human. Avoid lists and avoid dash characters. No links."
    )


@dataclass(frozen=True)
class ServiceAreaPolicy:
    # Empty allowlist means every ZIP is served
    zip_allowlist: frozenset[str] = frozenset()

    def allows(self, postal_code: str | None) -> bool:
        normalized = normalize_postal_code(postal_code)
        if not normalized:
            return False
        if not self.zip_allowlist:
            return True
        return normalized in self.zip_allowlist


@dataclass(frozen=True)
class PolicySnapshot:
    autopilot: AutopilotPolicy = field(default_factory=AutopilotPolicy)
    booking: BookingPolicy = field(default_factory=BookingPolicy)
    business_hours: BusinessHoursPolicy = field(default_factory=BusinessHoursPolicy)
    company: CompanyProfile = field(default_factory=CompanyProfile)
    service_area: ServiceAreaPolicy = field(default_factory=ServiceAreaPolicy)


# =============================================================================
# Coercion helpers
# =============================================================================


def get_timezone(name: str | None) -> ZoneInfo:
    """Get a ZoneInfo timezone with safe fallback."""
    fallback = settings.APPOINTMENT_TIMEZONE
    if not name:
        return ZoneInfo(fallback)
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", name, fallback)
        return ZoneInfo(fallback)


def coerce_int(value: Any, fallback: int, *, min_value: int, max_value: int) -> int:
    """Round a stored number half-up and clamp it; non-numbers use fallback."""
    if isinstance(value, bool):
        return fallback
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return fallback
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return fallback
    rounded = math.floor(value + 0.5)
    return min(max_value, max(min_value, rounded))


def coerce_str(value: Any, fallback: str) -> str:
    if not isinstance(value, str):
        return fallback
    trimmed = value.strip()
    return trimmed or fallback


def parse_time_string(value: Any) -> time | None:
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts) or len(parts[1]) != 2:
        return None
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return time(hour, minute)


def _coerce_windows(value: Any, fallback: tuple[TimeWindow, ...]) -> tuple[TimeWindow, ...]:
    if not isinstance(value, list):
        return fallback
    windows = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        start = parse_time_string(entry.get("start"))
        end = parse_time_string(entry.get("end"))
        if start and end:
            windows.append(TimeWindow(start, end))
    return tuple(windows)


# =============================================================================
# Parsers (stored JSON -> snapshot)
# =============================================================================


def parse_autopilot_policy(stored: dict | None) -> AutopilotPolicy:
    default = AutopilotPolicy()
    if not stored:
        return default
    return AutopilotPolicy(
        enabled=stored.get("enabled") is not False,
        auto_send_after_minutes=coerce_int(
            stored.get("autoSendAfterMinutes"),
            default.auto_send_after_minutes,
            min_value=1,
            max_value=120,
        ),
        activity_window_minutes=coerce_int(
            stored.get("activityWindowMinutes"),
            default.activity_window_minutes,
            min_value=1,
            max_value=120,
        ),
        retry_delay_minutes=coerce_int(
            stored.get("retryDelayMinutes"),
            default.retry_delay_minutes,
            min_value=1,
            max_value=60,
        ),
        dm_sms_fallback_after_minutes=coerce_int(
            stored.get("dmSmsFallbackAfterMinutes"),
            default.dm_sms_fallback_after_minutes,
            min_value=15,
            max_value=24 * 60,
        ),
        dm_min_silence_before_sms_minutes=coerce_int(
            stored.get("dmMinSilenceBeforeSmsMinutes"),
            default.dm_min_silence_before_sms_minutes,
            min_value=5,
            max_value=12 * 60,
        ),
        agent_display_name=coerce_str(stored.get("agentDisplayName"), default.agent_display_name),
    )


def parse_booking_policy(stored: dict | None) -> BookingPolicy:
    default = BookingPolicy()
    if not stored:
        return default
    return BookingPolicy(
        capacity=coerce_int(stored.get("capacity"), default.capacity, min_value=1, max_value=8),
        hold_minutes=coerce_int(
            stored.get("holdMinutes"), default.hold_minutes, min_value=5, max_value=120
        ),
        booking_window_days=coerce_int(
            stored.get("bookingWindowDays"), default.booking_window_days, min_value=1, max_value=365
        ),
        buffer_minutes=coerce_int(
            stored.get("bufferMinutes"), default.buffer_minutes, min_value=0, max_value=240
        ),
        max_jobs_per_day=coerce_int(
            stored.get("maxJobsPerDay"), default.max_jobs_per_day, min_value=1, max_value=50
        ),
        closed_on_holidays=stored.get("closedOnHolidays") is True,
    )


def parse_business_hours_policy(stored: dict | None) -> BusinessHoursPolicy:
    default = BusinessHoursPolicy()
    if not stored:
        return default
    tz_name = coerce_str(stored.get("timezone"), default.timezone)
    tz_name = get_timezone(tz_name).key
    weekly_raw = stored.get("weekly") if isinstance(stored.get("weekly"), dict) else {}
    weekly = {
        index: _coerce_windows(weekly_raw.get(key), default.weekly[index])
        for index, key in enumerate(WEEKDAY_KEYS)
    }
    return BusinessHoursPolicy(timezone=tz_name, weekly=weekly)


def parse_company_profile(stored: dict | None) -> CompanyProfile:
    default = CompanyProfile()
    if not stored:
        return default
    return CompanyProfile(
        business_name=coerce_str(stored.get("businessName"), default.business_name),
        primary_phone=coerce_str(stored.get("primaryPhone"), default.primary_phone),
        service_area_summary=coerce_str(
            stored.get("serviceAreaSummary"), default.service_area_summary
        ),
        pricing_summary=coerce_str(stored.get("trailerAndPricingSummary"), default.pricing_summary),
        what_we_do=coerce_str(stored.get("whatWeDo"), default.what_we_do),
        what_we_dont_do=coerce_str(stored.get("whatWeDontDo"), default.what_we_dont_do),
        booking_style=coerce_str(stored.get("bookingStyle"), default.booking_style),
        agent_notes=coerce_str(stored.get("agentNotes"), default.agent_notes),
    )


def parse_service_area_policy(stored: dict | None) -> ServiceAreaPolicy:
    if not stored or not isinstance(stored.get("zipAllowlist"), list):
        return ServiceAreaPolicy()
    allowlist = set()
    for value in stored["zipAllowlist"]:
        if isinstance(value, str):
            normalized = normalize_postal_code(value)
            if normalized:
                allowlist.add(normalized)
    return ServiceAreaPolicy(zip_allowlist=frozenset(allowlist))


# =============================================================================
# Store access
# =============================================================================


def get_policy_setting(db: Session, key: str) -> dict | None:
    row = db.query(PolicySetting).filter(PolicySetting.key == key).first()
    if row is None or not isinstance(row.value, dict):
        return None
    return row.value


def set_policy_setting(db: Session, key: str, value: dict, commit: bool = True) -> PolicySetting:
    """Replace a policy document (merging is the admin surface's job)."""
    row = db.query(PolicySetting).filter(PolicySetting.key == key).first()
    if row is None:
        row = PolicySetting(key=key, value=value)
        db.add(row)
    else:
        row.value = value
    if commit:
        db.commit()
    else:
        db.flush()
    return row


def load_policy_snapshot(db: Session) -> PolicySnapshot:
    """Read every policy document in one query and freeze the result."""
    rows = db.query(PolicySetting).filter(PolicySetting.key.in_(POLICY_KEYS)).all()
    stored = {row.key: row.value for row in rows if isinstance(row.value, dict)}
    return PolicySnapshot(
        autopilot=parse_autopilot_policy(stored.get(AUTOPILOT_KEY)),
        booking=parse_booking_policy(stored.get(BOOKING_RULES_KEY)),
        business_hours=parse_business_hours_policy(stored.get(BUSINESS_HOURS_KEY)),
        company=parse_company_profile(stored.get(COMPANY_PROFILE_KEY)),
        service_area=parse_service_area_policy(stored.get(SERVICE_AREA_KEY)),
    )
