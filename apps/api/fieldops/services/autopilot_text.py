"""Text rules for autopilot drafts.

Pure functions: sanitizing generated replies into the business voice,
clamping them per channel, and reading signals (ZIP, phone, lead cards)
out of customer messages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from fieldops.db.enums import Channel, MessageDirection
from fieldops.utils.normalization import try_normalize_phone

EMAIL_MAX_CHARS = 900
SHORT_CHANNEL_MAX_CHARS = 240  # sms and dm
MIN_SENTENCE_CUT = 80
PREVIEW_MAX_CHARS = 140

_DASH_LIKE_RE = re.compile("[\u002d\u2010\u2011\u2012\u2013\u2014\u2015\u2212\ufe63\uff0d]")
_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
_LEADING_SPACE_RE = re.compile(r"\n[ \t]+")
_MULTI_SPACE_RE = re.compile(r"[ \t]{2,}")

_URL_RE = re.compile(r"\bhttps?://\S+", re.IGNORECASE)
_WWW_RE = re.compile(r"\bwww\.\S+", re.IGNORECASE)
# Bare business domains ("example.com/book") and booking paths
_DOMAIN_RE = re.compile(r"\b[a-z0-9]+(?:\.[a-z0-9]+)*\.(?:com|net|org|co|us|biz)\b\S*", re.IGNORECASE)
_BOOK_PATH_RE = re.compile(r"/book\b", re.IGNORECASE)

FOOTER_MARKERS = ("missing info", "missing information", "info checklist", "checklist:")

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE_RE = re.compile(r"\s+")

_ZIP_RE = re.compile(r"\b\d{5}\b")
_PHONE_CANDIDATE_RE = re.compile(r"\+?\d[\d(). \-]{7,}\d")

LEAD_CARD_MARKERS = (
    "phone number:",
    "email:",
    "zip code:",
    "first name:",
    "when do you want it gone?:",
)


@dataclass(frozen=True)
class ReplyCandidate:
    body: str
    subject: str = ""


@dataclass(frozen=True)
class TranscriptLine:
    direction: str
    channel: str
    body: str
    created_at: datetime
    subject: str | None = None
    participant_name: str | None = None


# =============================================================================
# Sanitizing
# =============================================================================


def _tidy_whitespace(text: str) -> str:
    text = _TRAILING_SPACE_RE.sub("\n", text)
    text = _LEADING_SPACE_RE.sub("\n", text)
    text = _MULTI_SPACE_RE.sub(" ", text)
    return text.strip()


def strip_dash_like_chars(text: str) -> str:
    """Replace hyphens and dash look-alikes with spaces and tidy whitespace."""
    return _tidy_whitespace(_DASH_LIKE_RE.sub(" ", text))


def strip_links(text: str) -> str:
    """Remove URLs, bare domains and booking paths."""
    text = _URL_RE.sub("", text)
    text = _WWW_RE.sub("", text)
    text = _DOMAIN_RE.sub("", text)
    text = _BOOK_PATH_RE.sub("", text)
    text = _MULTI_SPACE_RE.sub(" ", text)
    return text.strip()


def strip_checklist_footer(body: str) -> str:
    """Cut everything from the first checklist-looking marker on."""
    lower = body.lower()
    positions = [pos for pos in (lower.find(marker) for marker in FOOTER_MARKERS) if pos >= 0]
    if not positions:
        return body
    return body[: min(positions)].strip()


def sanitize_reply(candidate: ReplyCandidate) -> ReplyCandidate:
    """Apply the voice rules to a generated candidate. Idempotent."""
    body = strip_checklist_footer(strip_links(strip_dash_like_chars(candidate.body)))
    subject = strip_links(strip_dash_like_chars(candidate.subject or ""))
    # Link and footer removal can leave spaces at line ends
    return ReplyCandidate(body=_tidy_whitespace(body), subject=_tidy_whitespace(subject))


def clamp_reply_body(body: str, channel: str) -> str:
    """
    Fit a reply to its channel.

    SMS/DM: at most two sentences and 240 characters. Email: 900 characters.
    Over-long text is cut at the last sentence end when that keeps at least
    80 characters, otherwise at the hard limit.
    """
    max_chars = EMAIL_MAX_CHARS if channel == Channel.EMAIL.value else SHORT_CHANNEL_MAX_CHARS
    text = strip_checklist_footer(body.strip())

    if channel != Channel.EMAIL.value:
        sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
        if len(sentences) >= 3:
            return " ".join(sentences[:2])[:max_chars].strip()

    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    last_end = max(cut.rfind("."), cut.rfind("!"), cut.rfind("?"))
    if last_end >= MIN_SENTENCE_CUT:
        return cut[: last_end + 1].strip()
    return cut.strip()


def normalize_for_compare(text: str) -> str:
    """Case-, whitespace- and punctuation-insensitive form for duplicate checks."""
    collapsed = _WHITESPACE_RE.sub(" ", (text or "").lower())
    return "".join(ch for ch in collapsed if ch.isalnum() or ch == " ").strip()


def preview(text: str | None) -> str:
    return (text or "")[:PREVIEW_MAX_CHARS]


# =============================================================================
# Signals in customer text
# =============================================================================


def extract_zip(text: str) -> str | None:
    match = _ZIP_RE.search(text or "")
    return match.group(0) if match else None


def extract_phone_e164(text: str) -> str | None:
    """First phone-looking run in ``text`` that is a valid US number, as E.164."""
    for candidate in _PHONE_CANDIDATE_RE.findall(text or ""):
        e164 = try_normalize_phone(candidate)
        if e164:
            return e164
    return None


def is_messenger_lead_card(body: str | None) -> bool:
    """Lead-form submissions relayed into DMs carry at least three field labels."""
    text = (body or "").lower()
    return sum(1 for marker in LEAD_CARD_MARKERS if marker in text) >= 3


def is_conversational_dm(channel: str | None, body: str | None) -> bool:
    """A real typed DM from the customer (not empty, not a lead card)."""
    return (
        channel == Channel.DM.value
        and bool((body or "").strip())
        and not is_messenger_lead_card(body)
    )


def should_allow_dm_autosend(history: list[TranscriptLine], current_inbound_body: str) -> bool:
    """DM drafts auto-release only once the customer has typed at least two real DMs."""
    if is_messenger_lead_card(current_inbound_body):
        return False
    conversational = [
        line
        for line in history
        if line.direction == MessageDirection.INBOUND.value
        and is_conversational_dm(line.channel, line.body)
    ]
    return len(conversational) >= 2


def build_transcript(lines: list[TranscriptLine]) -> str:
    rendered = []
    for line in lines:
        who = line.participant_name or (
            "Customer" if line.direction == MessageDirection.INBOUND.value else "Team"
        )
        subject = f" (subject: {line.subject})" if line.subject else ""
        rendered.append(f"[{line.created_at.isoformat()}] {who}{subject}: {line.body}")
    return "\n".join(rendered)
