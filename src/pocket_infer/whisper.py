# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Whisper speech-to-text engine over a single-pass exported graph."""

from __future__ import annotations

import dataclasses
import logging
import threading
from pathlib import Path
from typing import Optional

import numpy as np

from .audio import load_audio, log_mel_spectrogram
from .buffers import TensorBuffer
from .config import ModelConfig, WhisperConfig, resolve_model_dir
from .errors import ModelLoadError
from .session import ModelHandle, load_model, release, run_forward
from .tokenizer import Vocabulary, WhisperVocab
from .transcribe import decode_tokens, pad_or_trim

logger = logging.getLogger(__name__)


class WhisperEngine:
    """Transcribes fixed-length audio chunks with a Whisper graph.

    The graph takes a ``(1, n_mels, frames)`` float32 log-mel tensor and
    returns the generated token IDs directly, so transcription is one
    forward pass followed by token-to-text decoding.

    Examples
    --------
    >>> engine = WhisperEngine()
    >>> engine.initialize("whisper-tiny.en.onnx", "tokenizer.json")
    True
    >>> engine.transcribe_file("audio.wav")
    ' Hello world.'
    """

    def __init__(self, config: Optional[ModelConfig] = None) -> None:
        self._config = config or ModelConfig()
        self._handle: Optional[ModelHandle] = None
        self._vocab: Optional[Vocabulary] = None
        self._lock = threading.Lock()

    @classmethod
    def from_pretrained(
        cls,
        model_id_or_path: str | Path,
        model_filename: str = "model.onnx",
        **kwargs,
    ) -> "WhisperEngine":
        """Build an engine from a directory holding the graph and ``tokenizer.json``.

        Hub repo IDs are downloaded first.  The multilingual layout comes
        from the directory's ``config.json``.  Check ``is_initialized`` on
        the result.
        """
        path = resolve_model_dir(model_id_or_path, **kwargs)
        config = ModelConfig.from_pretrained(path)
        engine = cls(config)
        engine.initialize(path / model_filename, path, multilingual=config.whisper.multilingual)
        return engine

    @property
    def whisper_config(self) -> WhisperConfig:
        return self._config.whisper

    @property
    def is_initialized(self) -> bool:
        return (
            self._handle is not None
            and self._handle.is_initialized
            and self._vocab is not None
        )

    @property
    def using_accelerator(self) -> bool:
        return self._handle is not None and self._handle.using_accelerator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(
        self,
        model_path: str | Path,
        vocab_path: str | Path | Vocabulary,
        multilingual: bool = False,
    ) -> bool:
        """Load the model and its vocabulary.

        *vocab_path* may also be a ready ``Vocabulary``.  Returns ``False``
        and leaves the engine uninitialized if either part fails.
        """
        self.deinitialize()
        self._config = dataclasses.replace(
            self._config,
            whisper=dataclasses.replace(self._config.whisper, multilingual=multilingual),
        )

        engine_cfg = self._config.engine
        try:
            handle = load_model(
                model_path,
                prefer_accelerator=engine_cfg.prefer_accelerator,
                num_threads=engine_cfg.num_threads,
                accelerator_providers=engine_cfg.accelerator_providers,
            )
        except ModelLoadError:
            logger.exception("Failed to load Whisper model %s", model_path)
            return False
        logger.debug("Whisper model loaded. accelerator=%s", handle.using_accelerator)

        if isinstance(vocab_path, (str, Path)):
            try:
                vocab = WhisperVocab.from_pretrained(vocab_path, multilingual=multilingual)
            except Exception as exc:
                # tokenizers reports malformed files as a plain Exception
                logger.error("Failed to load vocabulary %s: %s", vocab_path, exc)
                release(handle)
                return False
        else:
            vocab = vocab_path

        self._handle = handle
        self._vocab = vocab
        logger.info("Whisper engine initialized. accelerator=%s", handle.using_accelerator)
        return True

    def deinitialize(self) -> None:
        with self._lock:
            release(self._handle)
            self._handle = None
            self._vocab = None

    def __enter__(self) -> "WhisperEngine":
        return self

    def __exit__(self, *args) -> None:
        self.deinitialize()

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    def transcribe_file(self, path: str | Path) -> Optional[str]:
        """Transcribe the first chunk of an audio file."""
        if not self.is_initialized:
            logger.error("Engine not initialized")
            return None
        samples = load_audio(path, target_sr=self.whisper_config.sample_rate)
        return self.transcribe_buffer(samples)

    def transcribe_buffer(self, samples) -> Optional[str]:
        """Transcribe raw 16 kHz mono samples.

        Input is zero-padded or truncated to ``sample_rate * chunk_seconds``
        samples.  Returns ``None`` when the engine is not initialized.
        """
        if not self.is_initialized:
            logger.error("Engine not initialized")
            return None

        cfg = self.whisper_config
        mel = log_mel_spectrogram(pad_or_trim(samples, cfg.n_samples), cfg)
        logger.debug("Mel spectrogram computed, shape=%s", mel.shape)

        with self._lock:
            # Re-checked under the lock: deinitialize() may have run meanwhile.
            if not self.is_initialized:
                logger.error("Engine not initialized")
                return None
            vocab = self._vocab
            output = run_forward(self._handle, self._input_buffer(mel))

        tokens = np.asarray(output).reshape(-1).astype(np.int64)
        logger.debug("output_len: %d", tokens.size)
        return decode_tokens(tokens, vocab)

    def _input_buffer(self, mel: np.ndarray) -> TensorBuffer:
        inputs = self._handle.info.inputs
        spec = inputs[0] if inputs else None
        if spec is not None and spec.is_static:
            return TensorBuffer(mel, spec.shape, spec.dtype)
        return TensorBuffer(mel, (1,) + mel.shape, np.float32)
