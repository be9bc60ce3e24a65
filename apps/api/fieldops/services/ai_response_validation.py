"""Helpers for parsing and validating AI JSON responses."""

from __future__ import annotations

import json
import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _strip_code_fences(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        lines = content.splitlines()
        if lines:
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def _loads_object(text: str) -> dict | None:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_json_object(text: str | None) -> dict | None:
    """
    Parse a JSON object out of model output.

    Tries the raw text, then the text without markdown fences, then the
    slice between the first "{" and the last "}".
    """
    if not text or not text.strip():
        return None

    data = _loads_object(text.strip())
    if data is not None:
        return data

    content = _strip_code_fences(text)
    data = _loads_object(content)
    if data is not None:
        return data

    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        logger.warning("Failed to parse JSON object: no object delimiters")
        return None
    data = _loads_object(content[start : end + 1])
    if data is None:
        logger.warning("Failed to parse JSON object from model output")
    return data


def validate_model(model_cls: type[ModelT], data: dict | None) -> ModelT | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        logger.warning("Model validation failed: %s", exc)
        return None
