
# fundrelease/providers/factory.py
from __future__ import annotations

from typing import Any, Dict

from settings import settings

_PROCESSOR_CACHE: Dict[str, Any] = {}


def get_processor(mode: str | None = None):
    key = (mode or settings.PROCESSOR_MODE or "").strip().lower()
    if not key:
        return None

    if key in _PROCESSOR_CACHE:
        return _PROCESSOR_CACHE[key]

    if key == "stripe":
        from fundrelease.providers.stripe import StripeProcessor
        processor = StripeProcessor()

    elif key == "mock":
        from fundrelease.providers.mock import MockProcessor
        processor = MockProcessor()

    else:
        return None

    _PROCESSOR_CACHE[key] = processor
    return processor
