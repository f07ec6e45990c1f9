# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Tests for transcriber token decoding."""

from __future__ import annotations

import logging

import numpy as np

from pocket_infer.tokenizer import WhisperVocab
from pocket_infer.transcribe import (
    DecodeState,
    TranscriptDecoder,
    decode_tokens,
    pad_or_trim,
)

EOT = 50256
TRANSCRIBE = 50358
TRANSLATE = 50357

WORDS = {5: "Hello", 7: " world", 9: " ignored", TRANSCRIBE: "<|transcribe|>"}


def _vocab(multilingual: bool = False) -> WhisperVocab:
    return WhisperVocab(WORDS, multilingual=multilingual)


class TestDecodeTokens:
    def test_stops_at_end_of_text(self):
        assert decode_tokens([5, 7, EOT, 9], _vocab()) == "Hello world"

    def test_nothing_after_eot_is_read(self):
        visited = []

        def tokens():
            for t in [5, EOT, 9, 7]:
                visited.append(t)
                yield t

        assert decode_tokens(tokens(), _vocab()) == "Hello"
        assert visited == [5, EOT]

    def test_control_tokens_are_skipped(self):
        tokens = [TRANSCRIBE, 5, 50400, 7, EOT]
        assert decode_tokens(tokens, _vocab()) == "Hello world"

    def test_no_eot_decodes_everything(self):
        assert decode_tokens([5, 7, 9], _vocab()) == "Hello world ignored"

    def test_empty(self):
        assert decode_tokens([], _vocab()) == ""

    def test_accepts_numpy_arrays(self):
        tokens = np.array([5, 7, EOT], dtype=np.int64)
        assert decode_tokens(tokens, _vocab()) == "Hello world"

    def test_multilingual_layout(self):
        vocab = _vocab(multilingual=True)
        # 50256 is an ordinary (unmapped) token in the multilingual layout.
        assert decode_tokens([5, 50256, 7, 50257, 9], vocab) == "Hello world"

    def test_logs_task_markers(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="pocket_infer.transcribe"):
            decode_tokens([TRANSCRIBE, TRANSLATE, 5, EOT], _vocab())
        assert "It is transcription" in caplog.text
        assert "It is translation" in caplog.text
        assert "Skipping token 50358" in caplog.text


class TestTranscriptDecoder:
    def test_state_machine(self):
        decoder = TranscriptDecoder(_vocab())
        assert decoder.state is DecodeState.EMITTING
        assert decoder.feed(TRANSCRIBE) is DecodeState.EMITTING
        assert decoder.feed(5) is DecodeState.EMITTING
        assert decoder.feed(EOT) is DecodeState.STOPPED
        assert decoder.feed(7) is DecodeState.STOPPED
        assert decoder.text == "Hello"


class TestPadOrTrim:
    def test_pads_with_zeros(self):
        out = pad_or_trim([1.0, 2.0], 5)
        assert out.dtype == np.float32
        assert out.tolist() == [1.0, 2.0, 0.0, 0.0, 0.0]

    def test_trims(self):
        out = pad_or_trim(np.arange(10), 4)
        assert out.tolist() == [0.0, 1.0, 2.0, 3.0]

    def test_exact_length_is_a_copy(self):
        samples = np.ones(3, dtype=np.float32)
        out = pad_or_trim(samples, 3)
        out[0] = 0.0
        assert samples[0] == 1.0
