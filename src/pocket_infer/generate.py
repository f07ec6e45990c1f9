# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Autoregressive text generation loop."""

from __future__ import annotations

import logging
from typing import Callable, Collection, Iterable, Iterator, Optional

import numpy as np

from .config import GenerationConfig
from .errors import InferenceError
from .sampling import INVALID_TOKEN, select_token

logger = logging.getLogger(__name__)

# Maps the current context to next-token logits.
ForwardFn = Callable[[list[int]], Optional[np.ndarray]]


class TokenSequence:
    """Append-only decoding context with a length bound.

    ``is_full`` reports when the bound is reached; the prompt itself may
    already exceed it (the forward pass truncates).
    """

    def __init__(self, tokens: Iterable[int] = (), max_len: Optional[int] = None) -> None:
        self._tokens: list[int] = [int(t) for t in tokens]
        self.max_len = max_len

    @property
    def tokens(self) -> list[int]:
        return list(self._tokens)

    @property
    def is_full(self) -> bool:
        return self.max_len is not None and len(self._tokens) >= self.max_len

    def append(self, token: int) -> None:
        self._tokens.append(int(token))

    def __len__(self) -> int:
        return len(self._tokens)


def _make_rng(config: GenerationConfig) -> Optional[np.random.Generator]:
    if config.seed is None:
        return None
    return np.random.default_rng(config.seed)


def stream_generate(
    forward: ForwardFn,
    prompt_ids: Iterable[int],
    config: GenerationConfig,
    eos_token_ids: Collection[int],
    max_seq_len: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> Iterator[int]:
    """Yield generated token IDs one at a time.

    Parameters
    ----------
    forward:
        Runs one forward pass over the full context and returns the logit
        vector for the next token.
    prompt_ids:
        Encoded prompt.
    config:
        Sampling settings and token budget.
    eos_token_ids:
        Tokens that end generation.  They are not yielded.
    max_seq_len:
        Generation stops once the context reaches this length.
    rng:
        Random generator for sampling.  Built from ``config.seed`` when
        omitted.

    Raises
    ------
    InferenceError
        If a forward pass fails or returns no logits.
    """
    if rng is None:
        rng = _make_rng(config)

    context = TokenSequence(prompt_ids, max_len=max_seq_len)

    for _ in range(config.max_tokens):
        logits = forward(context.tokens)
        if logits is None:
            raise InferenceError("Forward pass returned no logits")

        next_token = select_token(logits, config, rng)
        if next_token == INVALID_TOKEN:
            logger.warning("Sampler returned no token, stopping")
            break
        if next_token in eos_token_ids:
            logger.debug("EOS token %d, stopping", next_token)
            break

        context.append(next_token)
        yield next_token

        if context.is_full:
            logger.debug("Context reached max_seq_len=%s, stopping", max_seq_len)
            break


def generate(
    forward: ForwardFn,
    prompt_ids: Iterable[int],
    config: GenerationConfig,
    eos_token_ids: Collection[int],
    max_seq_len: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> list[int]:
    """Run ``stream_generate`` to completion and return the new tokens."""
    return list(
        stream_generate(
            forward,
            prompt_ids,
            config,
            eos_token_ids,
            max_seq_len=max_seq_len,
            rng=rng,
        )
    )
