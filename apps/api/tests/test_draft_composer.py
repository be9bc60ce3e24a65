"""Draft composer: plan pass, write pass, sanitizing and clamping."""

from datetime import datetime, timezone

import pytest

from fieldops.db.enums import Channel, MessageDirection
from fieldops.services import draft_composer
from fieldops.services.ai_provider import AIProvider, GenerationError, JsonResponse
from fieldops.services.autopilot_text import TranscriptLine
from fieldops.services.draft_composer import DraftComposer, DraftContext, build_user_prompt
from fieldops.services.policy_service import CompanyProfile

PLAN = {
    "intent": "pickup quote",
    "tone": "friendly",
    "facts": ["couch"],
    "questions": ["zip"],
    "next_action": "ask for ZIP",
    "constraints": [],
}


class FakeProvider(AIProvider):
    def __init__(self, draft=None, plan=None, plan_error=None, draft_error=None):
        self.draft = draft
        self.plan = plan
        self.plan_error = plan_error
        self.draft_error = draft_error
        self.calls = []

    async def generate_json(
        self,
        messages,
        *,
        model,
        schema_name,
        schema,
        max_output_tokens,
        reasoning_effort=None,
    ):
        self.calls.append({"model": model, "schema_name": schema_name, "messages": messages})
        if schema_name == "reply_plan":
            if self.plan_error:
                raise self.plan_error
            return JsonResponse(data=self.plan, model=model, output_text="")
        if self.draft_error:
            raise self.draft_error
        return JsonResponse(data=self.draft, model=model, output_text="")


def _context(channel=Channel.SMS.value, **overrides):
    values = {
        "channel": channel,
        "agent_name": "Devon",
        "company": CompanyProfile(),
        "transcript": [
            TranscriptLine(
                direction=MessageDirection.INBOUND.value,
                channel=channel,
                body="Can you take an old couch?",
                created_at=datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc),
            )
        ],
    }
    values.update(overrides)
    return DraftContext(**values)


def _draft(body, subject="", alternatives=(), missing_info=()):
    return {
        "best": {"body": body, "subject": subject},
        "alternatives": [{"body": alt, "subject": ""} for alt in alternatives],
        "missing_info": list(missing_info),
    }


@pytest.mark.asyncio
async def test_compose_runs_plan_then_write():
    provider = FakeProvider(draft=_draft("Sure thing! What ZIP are you in?"), plan=PLAN)
    composer = DraftComposer(provider, write_model="gpt-4.1", think_model="gpt-5-mini")

    result = await composer.compose(_context())

    assert [call["schema_name"] for call in provider.calls] == ["reply_plan", "autopilot_draft"]
    assert [call["model"] for call in provider.calls] == ["gpt-5-mini", "gpt-4.1"]
    assert "Reply plan (internal)" in provider.calls[1]["messages"][1].content
    assert result.best.body == "Sure thing! What ZIP are you in?"
    assert result.model == "gpt-4.1"
    assert result.plan.intent == "pickup quote"


@pytest.mark.asyncio
async def test_plan_failures_are_tolerated():
    provider = FakeProvider(
        draft=_draft("Happy to help."),
        plan_error=GenerationError("openai_timeout", retryable=True),
    )
    composer = DraftComposer(provider, write_model="gpt-4.1", think_model="gpt-5-mini")

    result = await composer.compose(_context())

    assert result.best.body == "Happy to help."
    assert result.plan is None


@pytest.mark.asyncio
async def test_no_think_model_skips_plan_pass():
    provider = FakeProvider(draft=_draft("Happy to help."))
    composer = DraftComposer(provider, write_model="gpt-4.1", think_model="")

    await composer.compose(_context())

    assert [call["schema_name"] for call in provider.calls] == ["autopilot_draft"]


@pytest.mark.asyncio
async def test_reply_is_sanitized_and_clamped_for_sms():
    body = (
        "Hi there — thanks for reaching out! Book at example.com/book today. "
        "We can come Thursday. Photos help too.\nMissing info: ZIP, items"
    )
    provider = FakeProvider(
        draft=_draft(body, subject="ignored", alternatives=["", "Another option here."],
                     missing_info=[" zip ", "", "items"])
    )
    composer = DraftComposer(provider, write_model="gpt-4.1")

    result = await composer.compose(_context())

    assert result.best.body == "Hi there thanks for reaching out! Book at today."
    assert result.best.subject == ""
    assert [alt.body for alt in result.alternatives] == ["Another option here."]
    assert result.missing_info == ["zip", "items"]


@pytest.mark.asyncio
async def test_email_keeps_subject():
    provider = FakeProvider(draft=_draft("Thanks for the photos.", subject="Your pickup quote"))
    composer = DraftComposer(provider, write_model="gpt-4.1")

    result = await composer.compose(_context(channel=Channel.EMAIL.value))

    assert result.best.subject == "Your pickup quote"


@pytest.mark.asyncio
async def test_empty_body_after_sanitizing_is_retryable():
    provider = FakeProvider(draft=_draft("https://example.com/book"))
    composer = DraftComposer(provider, write_model="gpt-4.1")

    with pytest.raises(GenerationError) as exc_info:
        await composer.compose(_context())

    assert exc_info.value.code == "openai_empty_response"
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_schema_mismatch_is_not_retryable():
    provider = FakeProvider(draft={"reply": "hello"})
    composer = DraftComposer(provider, write_model="gpt-4.1")

    with pytest.raises(GenerationError) as exc_info:
        await composer.compose(_context())

    assert exc_info.value.code == "openai_invalid_response"
    assert exc_info.value.retryable is False


def test_user_prompt_flags_out_of_area_zip():
    prompt = build_user_prompt(_context(postal_code="30114", in_service_area=False))
    assert "ZIP: 30114" in prompt
    assert "OUT OF SERVICE AREA" in prompt

    prompt = build_user_prompt(_context())
    assert "ask for ZIP" in prompt
    assert "Customer: Can you take an old couch?" in prompt


def test_get_draft_composer_off_without_provider(monkeypatch):
    monkeypatch.setattr(draft_composer, "get_provider", lambda: None)
    assert draft_composer.get_draft_composer() is None

    provider = FakeProvider()
    monkeypatch.setattr(draft_composer, "get_provider", lambda: provider)
    composer = draft_composer.get_draft_composer()
    assert composer.provider is provider
