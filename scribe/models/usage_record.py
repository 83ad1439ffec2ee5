"""
scribe/models/usage_record.py

Metered AI operations and quota decisions.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class UsageOperation(str, Enum):
    OCR = "ocr"
    TITLE = "title"
    TAGS = "tags"
    CLEAN = "clean"
    SUMMARIZE = "summarize"
    REWRITE = "rewrite"


class UsageRecord(BaseModel):
    """Immutable record of one completed metered operation."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    note_id: Optional[str] = None
    operation: UsageOperation
    tokens_used: int
    cost: Decimal
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class QuotaCheck(BaseModel):
    """Outcome of a quota gate. limit == -1 means unlimited."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    used: int
    limit: int
