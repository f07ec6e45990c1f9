# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Accelerator capability probe.

Answers "is a hardware execution provider usable here?" by asking ONNX
Runtime which providers it was built with.  Nothing is allocated and no
exception ever escapes: a probe that cannot be answered means
"unavailable".
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .config import ACCELERATOR_PROVIDERS

logger = logging.getLogger(__name__)


def available_accelerator(
    preferred: Sequence[str] = ACCELERATOR_PROVIDERS,
) -> Optional[str]:
    """Return the first provider in *preferred* that the runtime offers.

    Returns ``None`` when none is offered or when the runtime cannot be
    queried.
    """
    try:
        import onnxruntime as ort

        offered = set(ort.get_available_providers())
    except Exception as exc:
        logger.warning("Accelerator probe failed, treating as unavailable: %s", exc)
        return None

    for provider in preferred:
        if provider in offered:
            logger.debug("Accelerator available: %s", provider)
            return provider

    logger.debug("No accelerator provider available (offered: %s)", sorted(offered))
    return None


def is_accelerator_available(
    preferred: Sequence[str] = ACCELERATOR_PROVIDERS,
) -> bool:
    """Return ``True`` if any provider in *preferred* is usable."""
    return available_accelerator(preferred) is not None
