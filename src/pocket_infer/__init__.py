# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""pocket-infer: on-device LLM and Whisper inference with accelerator fallback."""

__version__ = "0.1.0"

from .accelerator import available_accelerator, is_accelerator_available
from .audio import load_audio, log_mel_spectrogram
from .buffers import TensorBuffer
from .config import (
    EngineConfig,
    GenerationConfig,
    LlmConfig,
    ModelConfig,
    WhisperConfig,
    resolve_model_dir,
)
from .errors import (
    AcceleratorUnavailable,
    InferenceError,
    ModelLoadError,
    PocketInferError,
)
from .generate import TokenSequence, generate, stream_generate
from .llm import LlmEngine, ServiceState, Status, TextGenerator
from .runtime import ModelRuntime
from .sampling import (
    INVALID_TOKEN,
    greedy_decode,
    sample,
    sample_token,
    softmax,
    temperature_scale,
    top_k_filter,
)
from .session import (
    AcceleratorDelegate,
    AcquireResult,
    AcquireStatus,
    ModelHandle,
    ModelInfo,
    acquire,
    load_model,
    release,
    run_forward,
)
from .tokenizer import BpeTokenizer, VocabTokenizer, WhisperVocab, load_tokenizer
from .transcribe import DecodeState, TranscriptDecoder, decode_tokens, pad_or_trim
from .whisper import WhisperEngine

__all__ = [
    "__version__",
    "available_accelerator",
    "is_accelerator_available",
    "load_audio",
    "log_mel_spectrogram",
    "TensorBuffer",
    "EngineConfig",
    "GenerationConfig",
    "LlmConfig",
    "ModelConfig",
    "WhisperConfig",
    "resolve_model_dir",
    "AcceleratorUnavailable",
    "InferenceError",
    "ModelLoadError",
    "PocketInferError",
    "TokenSequence",
    "generate",
    "stream_generate",
    "LlmEngine",
    "ServiceState",
    "Status",
    "TextGenerator",
    "ModelRuntime",
    "INVALID_TOKEN",
    "greedy_decode",
    "sample",
    "sample_token",
    "softmax",
    "temperature_scale",
    "top_k_filter",
    "AcceleratorDelegate",
    "AcquireResult",
    "AcquireStatus",
    "ModelHandle",
    "ModelInfo",
    "acquire",
    "load_model",
    "release",
    "run_forward",
    "BpeTokenizer",
    "VocabTokenizer",
    "WhisperVocab",
    "load_tokenizer",
    "DecodeState",
    "TranscriptDecoder",
    "decode_tokens",
    "pad_or_trim",
    "WhisperEngine",
]
