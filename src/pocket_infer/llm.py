# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""On-device text generation: the LLM engine and the service built on it."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Optional

import numpy as np

from .buffers import TensorBuffer
from .config import GenerationConfig, ModelConfig, resolve_model_dir
from .errors import ModelLoadError
from .generate import generate, stream_generate
from .sampling import greedy_decode, sample_token
from .session import ModelHandle, ModelInfo, load_model, release, run_forward
from .tokenizer import TextTokenizer, load_tokenizer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class CacheStepResult:
    """Output of a cache-augmented forward pass."""

    logits: np.ndarray
    """Next-token logits, shape ``(vocab_size,)``."""

    state: dict[str, np.ndarray]
    """Every other graph output, keyed by output name."""


class LlmEngine:
    """Runs a text model one forward pass at a time.

    Parameters
    ----------
    config:
        Engine, fallback shape and generation settings.

    Examples
    --------
    >>> engine = LlmEngine()
    >>> if engine.initialize("model.onnx"):
    ...     logits = engine.run_inference([1, 15, 27])
    ...     token = engine.greedy_decode(logits)
    """

    def __init__(self, config: Optional[ModelConfig] = None) -> None:
        self._config = config or ModelConfig()
        self._handle: Optional[ModelHandle] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._handle is not None and self._handle.is_initialized

    @property
    def using_accelerator(self) -> bool:
        return self._handle is not None and self._handle.using_accelerator

    @property
    def model_info(self) -> ModelInfo:
        if self._handle is None:
            llm = self._config.llm
            return ModelInfo(max_seq_len=llm.max_seq_len, vocab_size=llm.vocab_size)
        return self._handle.info

    @property
    def max_seq_len(self) -> int:
        return self.model_info.max_seq_len

    @property
    def vocab_size(self) -> int:
        return self.model_info.vocab_size

    def initialize(self, model_path: str | Path) -> bool:
        """Load *model_path*.  Returns ``False`` (and logs) on failure."""
        self.deinitialize()
        engine_cfg = self._config.engine
        try:
            self._handle = load_model(
                model_path,
                prefer_accelerator=engine_cfg.prefer_accelerator,
                num_threads=engine_cfg.num_threads,
                accelerator_providers=engine_cfg.accelerator_providers,
                defaults=self._config.llm,
            )
        except ModelLoadError:
            logger.exception("Failed to initialize LLM engine")
            return False

        logger.info(
            "LLM engine initialized. accelerator=%s, max_seq_len=%d, vocab_size=%d",
            self.using_accelerator,
            self.max_seq_len,
            self.vocab_size,
        )
        return True

    def deinitialize(self) -> None:
        """Release the model and its accelerator resources."""
        with self._lock:
            release(self._handle)
            self._handle = None

    def __enter__(self) -> "LlmEngine":
        return self

    def __exit__(self, *args) -> None:
        self.deinitialize()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _input_buffer(self, input_ids) -> tuple[TensorBuffer, int]:
        """Token buffer for the first graph input, and the real token count."""
        ids = [int(t) for t in input_ids]
        if not ids:
            raise ValueError("input_ids must not be empty")

        seq_len = min(len(ids), self.max_seq_len)
        spec = self.model_info.inputs[0] if self.model_info.inputs else None
        dtype = spec.dtype if spec is not None else np.int32

        if spec is not None and spec.is_static and len(spec.shape) == 2:
            buffer = TensorBuffer.from_tokens(
                ids, spec.shape[1], pad_id=self._config.llm.pad_token_id, dtype=dtype
            )
        else:
            buffer = TensorBuffer(ids[:seq_len], (1, seq_len), dtype)
        return buffer, seq_len

    @staticmethod
    def _next_token_logits(output: np.ndarray, seq_len: int) -> np.ndarray:
        logits = np.asarray(output, dtype=np.float32)
        if logits.ndim >= 3:
            # (batch, positions, vocab): take the last real position
            logits = logits[0, min(seq_len, logits.shape[1]) - 1]
        elif logits.ndim == 2:
            logits = logits[0]
        return logits.reshape(-1).copy()

    def run_inference(self, input_ids) -> Optional[np.ndarray]:
        """Return next-token logits for *input_ids*.

        Sequences longer than ``max_seq_len`` are truncated.  Returns
        ``None`` when the engine is not initialized; a failing forward pass
        raises ``InferenceError``.
        """
        with self._lock:
            if not self.is_initialized:
                logger.error("Engine not initialized")
                return None
            buffer, seq_len = self._input_buffer(input_ids)
            output = run_forward(self._handle, buffer)
        return self._next_token_logits(output, seq_len)

    def run_inference_with_cache(
        self,
        input_ids,
        kv_cache: Optional[Mapping[str, np.ndarray]] = None,
    ) -> Optional[CacheStepResult]:
        """Forward pass for graphs that take and return key/value state.

        *kv_cache* maps extra graph input names to their current state.
        The first graph output is read as logits; every other output is
        returned as state for the next step.
        """
        with self._lock:
            if not self.is_initialized:
                logger.error("Engine not initialized")
                return None
            buffer, seq_len = self._input_buffer(input_ids)
            output_names = [spec.name for spec in self.model_info.outputs]
            outputs = run_forward(
                self._handle,
                buffer,
                aux_inputs=kv_cache,
                output_names=output_names or None,
            )

        if not isinstance(outputs, dict):
            return CacheStepResult(self._next_token_logits(outputs, seq_len), {})

        logits_name = output_names[0]
        state = {name: value for name, value in outputs.items() if name != logits_name}
        return CacheStepResult(self._next_token_logits(outputs[logits_name], seq_len), state)

    # Sampling helpers kept on the engine for callers holding only an engine.

    @staticmethod
    def sample_token(
        logits,
        temperature: float,
        top_k: int = 0,
        rng: Optional[np.random.Generator] = None,
    ) -> int:
        return sample_token(logits, temperature, top_k, rng)

    @staticmethod
    def greedy_decode(logits) -> int:
        return greedy_decode(logits)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ServiceState(enum.Enum):
    UNAVAILABLE = "unavailable"
    LOADING = "loading"
    AVAILABLE = "available"
    ERROR = "error"


@dataclass(frozen=True)
class Status:
    """Outcome of ``TextGenerator.initialize``."""

    state: ServiceState
    message: str = ""
    out_of_memory: bool = False

    @classmethod
    def error(cls, message: str, out_of_memory: bool = False) -> "Status":
        return cls(ServiceState.ERROR, message, out_of_memory)


class TextGenerator:
    """Prompt-in, text-out generation over an ``LlmEngine`` and a tokenizer.

    Examples
    --------
    >>> with TextGenerator() as gen:
    ...     status = gen.initialize("model.onnx", "vocab.txt")
    ...     print(gen.generate_content("Hello"))
    """

    def __init__(self, config: Optional[ModelConfig] = None) -> None:
        self._config = config or ModelConfig()
        self._engine: Optional[LlmEngine] = None
        self._tokenizer: Optional[TextTokenizer] = None
        self._status = Status(ServiceState.UNAVAILABLE)
        self.model_name: Optional[str] = None
        self.model_filename: Optional[str] = None

    @classmethod
    def from_pretrained(
        cls,
        model_id_or_path: str | Path,
        model_filename: str = "model.onnx",
        vocab_filename: str = "tokenizer.json",
        **kwargs,
    ) -> "TextGenerator":
        """Build and initialize a generator from a model directory or Hub repo.

        The directory's ``config.json`` (if any) supplies the configuration.
        Check ``status`` on the result: a failed load is reported there,
        not raised.

        Parameters
        ----------
        model_id_or_path:
            Local directory or HuggingFace Hub repo ID.
        model_filename:
            ONNX graph inside the directory.
        vocab_filename:
            Vocabulary or tokenizer file inside the directory.
        **kwargs:
            Passed to ``snapshot_download`` when downloading.
        """
        path = resolve_model_dir(model_id_or_path, **kwargs)
        generator = cls(ModelConfig.from_pretrained(path))
        generator.initialize(path / model_filename, path / vocab_filename)
        return generator

    @property
    def status(self) -> Status:
        return self._status

    @property
    def is_available(self) -> bool:
        return self._status.state is ServiceState.AVAILABLE

    @property
    def using_accelerator(self) -> bool:
        return self._engine is not None and self._engine.using_accelerator

    def initialize(self, model_path: str | Path, vocab_path: str | Path) -> Status:
        """Load the model and vocabulary, replacing anything loaded before."""
        model_path = Path(model_path)
        vocab_path = Path(vocab_path)
        logger.debug("Initializing text generator with model: %s", model_path)

        if not model_path.exists():
            logger.error("Model file not found: %s", model_path)
            self._status = Status.error("Model not found")
            return self._status
        if not vocab_path.exists():
            logger.error("Vocab file not found: %s", vocab_path)
            self._status = Status.error("Vocabulary not found")
            return self._status

        self.release()
        self._status = Status(ServiceState.LOADING)

        try:
            try:
                tokenizer = load_tokenizer(vocab_path)
            except MemoryError:
                raise
            except Exception as exc:
                # tokenizers reports malformed files as a plain Exception
                logger.error("Failed to load vocabulary %s: %s", vocab_path, exc)
                self._status = Status.error("Error loading vocabulary")
                return self._status

            engine = LlmEngine(self._config)
            if not engine.initialize(model_path):
                self._status = Status.error("Error initializing model")
                return self._status
        except MemoryError:
            logger.exception("Out of memory while loading %s", model_path)
            self._status = Status.error("Out of memory while loading the model", True)
            return self._status
        except Exception as exc:
            logger.exception("Failed to initialize text generator")
            self._status = Status.error(str(exc) or type(exc).__name__)
            return self._status

        self._tokenizer = tokenizer
        self._engine = engine
        self.model_name = model_path.stem
        self.model_filename = model_path.name
        self._status = Status(ServiceState.AVAILABLE)
        logger.info("Text generator initialized. accelerator=%s", engine.using_accelerator)
        return self._status

    def release(self) -> None:
        if self._engine is not None:
            self._engine.deinitialize()
        self._engine = None
        self._tokenizer = None
        self._status = Status(ServiceState.UNAVAILABLE)
        self.model_name = None
        self.model_filename = None

    def __enter__(self) -> "TextGenerator":
        return self

    def __exit__(self, *args) -> None:
        self.release()

    # ------------------------------------------------------------------

    def generate_content(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
    ) -> Optional[str]:
        """Generate a completion for *prompt*.

        Returns ``None`` when the service is not available.
        """
        if not self.is_available:
            logger.error("Text generator not available")
            return None

        config = config or self._config.generation
        tokenizer, engine = self._tokenizer, self._engine
        prompt_ids = tokenizer.encode(prompt, add_bos=True)
        if not prompt_ids:
            logger.debug("Prompt encoded to no tokens, nothing to generate")
            return ""
        tokens = generate(
            engine.run_inference,
            prompt_ids,
            config,
            eos_token_ids={tokenizer.eos_id},
            max_seq_len=engine.max_seq_len,
        )
        return tokenizer.decode(tokens)

    def generate_content_stream(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
    ) -> Optional[Iterator[str]]:
        """Like ``generate_content`` but yields the text of each new token.

        Tokens that decode to an empty string are not yielded.  Returns
        ``None`` when the service is not available.
        """
        if not self.is_available:
            logger.error("Text generator not available")
            return None

        config = config or self._config.generation
        return self._stream(prompt, config)

    def _stream(self, prompt: str, config: GenerationConfig) -> Iterator[str]:
        tokenizer, engine = self._tokenizer, self._engine
        prompt_ids = tokenizer.encode(prompt, add_bos=True)
        if not prompt_ids:
            logger.debug("Prompt encoded to no tokens, nothing to generate")
            return
        for token in stream_generate(
            engine.run_inference,
            prompt_ids,
            config,
            eos_token_ids={tokenizer.eos_id},
            max_seq_len=engine.max_seq_len,
        ):
            text = tokenizer.decode_token(token)
            if text:
                yield text
