"""Shared utility functions used across Radar modules."""
from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError as PydanticValidationError

from radar.models import TimelineEntry
from radar.schemas import Evaluation

log = logging.getLogger(__name__)


def entry_evaluation(entry: TimelineEntry) -> Evaluation | None:
    """Decode the evaluation embedded in *entry*, or ``None`` while pending."""
    if entry.evaluated_at is None or not entry.evaluation_json:
        return None
    try:
        return Evaluation.model_validate_json(entry.evaluation_json)
    except PydanticValidationError as exc:
        log.warning("Stored evaluation for entry %s is unreadable: %s", entry.id, exc)
        return None


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
