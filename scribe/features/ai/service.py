"""
scribe/features/ai/service.py

Metered AI operations on notes.

Handles:
- Gating: monthly quota for ocr, Pro plan for tags/clean/summarize/rewrite,
  title generation ungated
- Calling the completion provider
- Cost estimation and usage recording for every successful call
"""

from dataclasses import dataclass, field
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from scribe.core.config import settings
from scribe.features.ai import prompts
from scribe.features.ai.provider import CompletionProvider, get_completion_provider
from scribe.features.entitlements.service import require_feature
from scribe.features.usage.cost import estimate_cost, operation_class_for
from scribe.features.usage.service import record_usage, release_operation, reserve_operation
from scribe.models.usage_record import UsageOperation


logger = logging.getLogger(__name__)

OCR_MAX_TOKENS = 2000
TEXT_MAX_TOKENS = 2000
SUMMARY_MAX_TOKENS = 1000
TITLE_MAX_TOKENS = 50
TAGS_MAX_TOKENS = 100


@dataclass(frozen=True)
class MeteredResult:
    operation: UsageOperation
    text: str
    tokens_used: int
    cost: Decimal
    tags: List[str] = field(default_factory=list)


def _system_user(system_prompt: str, text: str) -> List[Dict[str, Any]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": text},
    ]


def _run(
    user_id: str,
    operation: UsageOperation,
    messages: List[Dict[str, Any]],
    *,
    max_tokens: int,
    note_id: Optional[str],
    metadata: Optional[Dict[str, Any]],
    completion: Optional[CompletionProvider],
) -> MeteredResult:
    """Call the model, then record what it cost."""
    completion = completion or get_completion_provider()
    operation_class = operation_class_for(operation)
    model = settings.AI_VISION_MODEL if operation == UsageOperation.OCR else settings.AI_TEXT_MODEL

    result = completion.complete(messages, model=model, max_tokens=max_tokens)
    cost = estimate_cost(result.tokens_used, operation_class)
    record_usage(
        user_id,
        operation,
        result.tokens_used,
        cost,
        note_id=note_id,
        metadata={"model": model, **(metadata or {})},
    )
    logger.info(
        "ai.operation.completed",
        extra={"user_id": user_id, "operation": operation.value, "tokens_used": result.tokens_used, "cost": str(cost)},
    )
    return MeteredResult(operation=operation, text=result.text, tokens_used=result.tokens_used, cost=cost)


def extract_text(
    user_id: str,
    image_data_url: str,
    note_id: Optional[str] = None,
    completion: Optional[CompletionProvider] = None,
) -> MeteredResult:
    """
    OCR a notebook image (data URL or https URL).

    A quota slot is reserved before the call and released if it fails.

    Raises:
        QuotaExceededError: Monthly conversion limit reached
    """
    reserve_operation(user_id, UsageOperation.OCR)
    messages = [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompts.OCR_PROMPT},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ],
        }
    ]
    try:
        return _run(
            user_id,
            UsageOperation.OCR,
            messages,
            max_tokens=OCR_MAX_TOKENS,
            note_id=note_id,
            metadata=None,
            completion=completion,
        )
    except Exception:
        release_operation(user_id, UsageOperation.OCR)
        raise


def generate_title(
    user_id: str,
    text: str,
    note_id: Optional[str] = None,
    completion: Optional[CompletionProvider] = None,
) -> MeteredResult:
    result = _run(
        user_id,
        UsageOperation.TITLE,
        _system_user(prompts.TITLE_PROMPT, text[: prompts.TITLE_INPUT_CHARS]),
        max_tokens=TITLE_MAX_TOKENS,
        note_id=note_id,
        metadata=None,
        completion=completion,
    )
    title = result.text.replace('"', "").replace("'", "").strip() or prompts.UNTITLED
    return MeteredResult(operation=result.operation, text=title, tokens_used=result.tokens_used, cost=result.cost)


def parse_tags(raw: str) -> List[str]:
    tags = [tag.strip().lower() for tag in raw.split(",")]
    return [tag for tag in tags if tag][: prompts.MAX_TAGS]


def generate_tags(
    user_id: str,
    text: str,
    note_id: Optional[str] = None,
    completion: Optional[CompletionProvider] = None,
) -> MeteredResult:
    require_feature(user_id, "ai_features")
    result = _run(
        user_id,
        UsageOperation.TAGS,
        _system_user(prompts.TAGS_PROMPT, text[: prompts.TAGS_INPUT_CHARS]),
        max_tokens=TAGS_MAX_TOKENS,
        note_id=note_id,
        metadata=None,
        completion=completion,
    )
    return MeteredResult(
        operation=result.operation,
        text=result.text,
        tokens_used=result.tokens_used,
        cost=result.cost,
        tags=parse_tags(result.text),
    )


def clean_text(
    user_id: str,
    text: str,
    note_id: Optional[str] = None,
    completion: Optional[CompletionProvider] = None,
) -> MeteredResult:
    require_feature(user_id, "ai_features")
    return _run(
        user_id,
        UsageOperation.CLEAN,
        _system_user(prompts.CLEAN_PROMPT, text),
        max_tokens=TEXT_MAX_TOKENS,
        note_id=note_id,
        metadata=None,
        completion=completion,
    )


def summarize(
    user_id: str,
    text: str,
    summary_type: str = "short",
    note_id: Optional[str] = None,
    completion: Optional[CompletionProvider] = None,
) -> MeteredResult:
    require_feature(user_id, "ai_features")
    prompt = prompts.SUMMARY_PROMPTS.get(summary_type, prompts.SUMMARY_PROMPTS["short"])
    return _run(
        user_id,
        UsageOperation.SUMMARIZE,
        _system_user(prompt, text),
        max_tokens=SUMMARY_MAX_TOKENS,
        note_id=note_id,
        metadata={"summary_type": summary_type},
        completion=completion,
    )


def rewrite(
    user_id: str,
    text: str,
    style: str = "professional",
    note_id: Optional[str] = None,
    completion: Optional[CompletionProvider] = None,
) -> MeteredResult:
    require_feature(user_id, "ai_features")
    prompt = prompts.REWRITE_PROMPTS.get(style, prompts.REWRITE_PROMPTS["professional"])
    return _run(
        user_id,
        UsageOperation.REWRITE,
        _system_user(prompt, text),
        max_tokens=TEXT_MAX_TOKENS,
        note_id=note_id,
        metadata={"style": style},
        completion=completion,
    )
