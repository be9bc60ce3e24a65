"""Draft composer - turns a conversation into a sanitized reply candidate.

Two passes against the provider: an optional plan pass with the think model
(its failure is tolerated) and the write pass with the write model. The
result is validated, sanitized into the business voice and clamped to the
reply channel before anyone persists it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from fieldops.core.config import settings
from fieldops.db.enums import Channel
from fieldops.services import autopilot_text
from fieldops.services.ai_prompt_schemas import (
    AUTOPILOT_DRAFT_SCHEMA,
    REPLY_PLAN_SCHEMA,
    AutopilotDraftOutput,
    ReplyPlan,
)
from fieldops.services.ai_provider import AIProvider, ChatMessage, GenerationError, get_provider
from fieldops.services.ai_response_validation import validate_model
from fieldops.services.autopilot_text import ReplyCandidate, TranscriptLine
from fieldops.services.policy_service import CompanyProfile

logger = logging.getLogger(__name__)

PLAN_MAX_OUTPUT_TOKENS = 600
DRAFT_MAX_OUTPUT_TOKENS = 900
MAX_ALTERNATIVES = 2
MAX_MISSING_INFO = 8


@dataclass(frozen=True)
class DraftContext:
    """Everything the composer may tell the model about one inbound message."""

    channel: str
    agent_name: str
    company: CompanyProfile
    transcript: list[TranscriptLine]
    thread_state: str = "new"
    contact_name: str | None = None
    postal_code: str | None = None
    in_service_area: bool | None = None


@dataclass(frozen=True)
class DraftResult:
    best: ReplyCandidate
    model: str
    alternatives: list[ReplyCandidate] = field(default_factory=list)
    missing_info: list[str] = field(default_factory=list)
    plan: ReplyPlan | None = None


# =============================================================================
# Prompts
# =============================================================================


def build_system_prompt(context: DraftContext) -> str:
    company = context.company
    agent = context.agent_name
    return f"""
You are {agent}, a real human salesperson for {company.business_name}.
Write the next reply the customer will receive.

Rules:
* Sound like a real person. No emojis. Keep it short and natural.
* If you introduce yourself, use the name "{agent}" and do not introduce yourself as anyone else.
* Do NOT use bullet points, numbered lists, or hyphen or dash characters of any kind.
* Do NOT include any links, URLs, domains, or paths (including "/book").
* Ask only for what you still need to move forward: items, timing, ZIP or address, and photos when helpful.
* Do NOT include a checklist in the message body. Put missing items in "missing_info" only.
* Keep the reply concise. For SMS or DM, aim for 1 to 2 short sentences.
* If the ZIP is outside our service area, politely say we can't serve that area. Use "Service area:" below as truth.
* Do NOT mention that you are an AI or reference internal systems.
* Output ONLY JSON matching the schema.

Company profile (use as truth):
Business: {company.business_name}
Phone: {company.primary_phone}
Service area: {company.service_area_summary}
Trailer and pricing: {company.pricing_summary}
What we do: {company.what_we_do}
What we do not do: {company.what_we_dont_do}
Booking style: {company.booking_style}
Notes: {company.agent_notes}
""".strip()


def build_plan_system_prompt(context: DraftContext) -> str:
    return (
        f"You are {context.agent_name}. Read the conversation and produce a short internal "
        "plan for the best next reply.\n"
        "Do not write the customer message. Output ONLY JSON matching the schema."
    )


def build_user_prompt(context: DraftContext) -> str:
    lines = [
        f"Channel: {context.channel}",
        f"Thread state: {context.thread_state}",
        f"Customer name: {context.contact_name or 'Unknown'}",
    ]
    if context.postal_code:
        lines.append(f"ZIP: {context.postal_code}")
        if context.in_service_area is False:
            lines.append("Location: OUT OF SERVICE AREA")
        else:
            lines.append("Location: OK")
    else:
        lines.append("Location: unknown (ask for ZIP)")
    lines.append(f"Transcript:\n{autopilot_text.build_transcript(context.transcript)}")
    return f"Write a reply in the voice of {context.agent_name}.\n" + "\n".join(lines)


# =============================================================================
# Composer
# =============================================================================


class DraftComposer:
    """Generates a reply candidate through an AIProvider."""

    def __init__(self, provider: AIProvider, write_model: str, think_model: str | None = None):
        self.provider = provider
        self.write_model = write_model
        self.think_model = think_model or None

    async def plan(self, context: DraftContext, user_prompt: str) -> ReplyPlan | None:
        if not self.think_model:
            return None
        try:
            response = await self.provider.generate_json(
                [
                    ChatMessage(role="system", content=build_plan_system_prompt(context)),
                    ChatMessage(role="user", content=user_prompt),
                ],
                model=self.think_model,
                schema_name="reply_plan",
                schema=REPLY_PLAN_SCHEMA,
                max_output_tokens=PLAN_MAX_OUTPUT_TOKENS,
                reasoning_effort="low",
            )
        except GenerationError as exc:
            logger.info("Reply plan pass failed, writing without a plan: %s", exc.code)
            return None
        return validate_model(ReplyPlan, response.data)

    async def compose(self, context: DraftContext) -> DraftResult:
        """
        Produce a sanitized, channel-clamped draft.

        Raises GenerationError. An empty body after sanitizing is retryable
        (the next sample usually differs); a schema mismatch is not.
        """
        user_prompt = build_user_prompt(context)
        plan = await self.plan(context, user_prompt)
        if plan is not None:
            user_prompt = (
                f"{user_prompt}\n\nReply plan (internal):\n"
                f"{json.dumps(plan.model_dump(), ensure_ascii=False)}"
            )

        response = await self.provider.generate_json(
            [
                ChatMessage(role="system", content=build_system_prompt(context)),
                ChatMessage(role="user", content=user_prompt),
            ],
            model=self.write_model,
            schema_name="autopilot_draft",
            schema=AUTOPILOT_DRAFT_SCHEMA,
            max_output_tokens=DRAFT_MAX_OUTPUT_TOKENS,
        )
        output = validate_model(AutopilotDraftOutput, response.data)
        if output is None:
            raise GenerationError("openai_invalid_response", retryable=False)

        best = autopilot_text.sanitize_reply(
            ReplyCandidate(body=output.best.body, subject=output.best.subject)
        )
        body = autopilot_text.clamp_reply_body(best.body, context.channel)
        if not body:
            raise GenerationError("openai_empty_response", retryable=True)
        subject = best.subject.strip() if context.channel == Channel.EMAIL.value else ""

        alternatives = []
        for candidate in output.alternatives:
            cleaned = autopilot_text.sanitize_reply(
                ReplyCandidate(body=candidate.body, subject=candidate.subject)
            )
            if cleaned.body:
                alternatives.append(cleaned)
        missing_info = [item.strip() for item in output.missing_info if item.strip()]

        return DraftResult(
            best=ReplyCandidate(body=body, subject=subject),
            model=response.model,
            alternatives=alternatives[:MAX_ALTERNATIVES],
            missing_info=missing_info[:MAX_MISSING_INFO],
            plan=plan,
        )


def get_draft_composer() -> DraftComposer | None:
    """Composer from settings; None when generation is not configured."""
    provider = get_provider()
    if provider is None:
        return None
    return DraftComposer(
        provider,
        write_model=settings.OPENAI_WRITE_MODEL,
        think_model=settings.OPENAI_THINK_MODEL,
    )
