# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Exception types raised by pocket-infer."""

from __future__ import annotations


class PocketInferError(Exception):
    """Base class for all pocket-infer errors."""


class ModelLoadError(PocketInferError):
    """The model could not be read or no execution path could load it."""


class InferenceError(PocketInferError):
    """A single forward pass failed.

    The handle that produced it stays valid; callers may retry.
    """


class AcceleratorUnavailable(PocketInferError):
    """An accelerator provider could not be attached to a session.

    Only raised inside the session manager, which absorbs it and falls
    back to the CPU path.
    """
