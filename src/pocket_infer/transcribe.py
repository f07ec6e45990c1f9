# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Mapping transcriber output tokens to text."""

from __future__ import annotations

import enum
import logging
from typing import Iterable

import numpy as np

from .tokenizer import Vocabulary

logger = logging.getLogger(__name__)


class DecodeState(enum.Enum):
    EMITTING = "emitting"
    STOPPED = "stopped"


class TranscriptDecoder:
    """Token-by-token text assembly for a Whisper-style output sequence.

    Ordinary tokens (below end-of-text) append their text.  End-of-text
    moves the decoder to ``STOPPED`` and everything after it is ignored.
    Tokens above end-of-text are control tokens: logged and dropped,
    without changing state.
    """

    def __init__(self, vocab: Vocabulary) -> None:
        self.vocab = vocab
        self.state = DecodeState.EMITTING
        self._pieces: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._pieces)

    def feed(self, token: int) -> DecodeState:
        if self.state is DecodeState.STOPPED:
            return self.state

        token = int(token)
        eot = self.vocab.token_eot

        if token == eot:
            self.state = DecodeState.STOPPED
        elif token < eot:
            self._pieces.append(self.vocab.word_for_token(token))
        else:
            if token == self.vocab.token_transcribe:
                logger.debug("It is transcription")
            elif token == self.vocab.token_translate:
                logger.debug("It is translation")
            logger.debug(
                "Skipping token %d (%r)", token, self.vocab.word_for_token(token)
            )

        return self.state


def decode_tokens(tokens: Iterable[int], vocab: Vocabulary) -> str:
    """Decode *tokens* up to the first end-of-text token.

    *tokens* is consumed lazily, so nothing after end-of-text is read.
    """
    decoder = TranscriptDecoder(vocab)
    for token in tokens:
        if decoder.feed(token) is DecodeState.STOPPED:
            break
    return decoder.text


def pad_or_trim(samples, length: int) -> np.ndarray:
    """Zero-pad or truncate *samples* to exactly *length* float32 values."""
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    if samples.size >= length:
        return samples[:length].copy()
    out = np.zeros(length, dtype=np.float32)
    out[: samples.size] = samples
    return out
