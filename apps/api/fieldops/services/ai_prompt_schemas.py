"""Pydantic schemas for AI responses, plus the strict JSON schemas sent to the model."""

from pydantic import BaseModel, ConfigDict, Field


class ReplyPlan(BaseModel):
    """Internal plan from the think pass. Never shown to the customer."""

    model_config = ConfigDict(extra="ignore")

    intent: str
    tone: str
    facts: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    next_action: str
    constraints: list[str] = Field(default_factory=list)


class DraftCandidateOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    body: str
    subject: str = ""


class AutopilotDraftOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    best: DraftCandidateOutput
    alternatives: list[DraftCandidateOutput] = Field(default_factory=list)
    missing_info: list[str] = Field(default_factory=list)


_CANDIDATE_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "body": {"type": "string"},
        "subject": {"type": "string"},
    },
    "required": ["body", "subject"],
}

REPLY_PLAN_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "intent": {"type": "string"},
        "tone": {"type": "string"},
        "facts": {"type": "array", "items": {"type": "string"}},
        "questions": {"type": "array", "items": {"type": "string"}},
        "next_action": {"type": "string"},
        "constraints": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["intent", "tone", "facts", "questions", "next_action", "constraints"],
}

AUTOPILOT_DRAFT_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "best": _CANDIDATE_SCHEMA,
        "alternatives": {"type": "array", "items": _CANDIDATE_SCHEMA},
        "missing_info": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["best", "alternatives", "missing_info"],
}
