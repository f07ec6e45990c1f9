# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Configuration dataclasses for engines, generation and Whisper."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

# Execution providers tried, in order, when an accelerator is preferred.
ACCELERATOR_PROVIDERS: tuple[str, ...] = (
    "CUDAExecutionProvider",
    "ROCMExecutionProvider",
    "CoreMLExecutionProvider",
    "DmlExecutionProvider",
    "NnapiExecutionProvider",
)
CPU_PROVIDER = "CPUExecutionProvider"


@dataclass
class EngineConfig:
    """How an inference session is acquired."""

    prefer_accelerator: bool = True
    num_threads: Optional[int] = None
    accelerator_providers: tuple[str, ...] = ACCELERATOR_PROVIDERS

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "EngineConfig":
        engine_cfg = d.get("engine", d)
        providers = engine_cfg.get("accelerator_providers")
        return cls(
            prefer_accelerator=engine_cfg.get(
                "prefer_accelerator", cls.prefer_accelerator
            ),
            num_threads=engine_cfg.get("num_threads", cls.num_threads),
            accelerator_providers=(
                tuple(providers) if providers is not None else ACCELERATOR_PROVIDERS
            ),
        )


@dataclass(frozen=True)
class GenerationConfig:
    """Per-call sampling configuration.

    ``temperature`` of 0 disables scaling; the generation loop then uses
    greedy decoding.  ``top_k`` of 0 disables top-k filtering.
    """

    temperature: float = 0.7
    top_k: int = 40
    max_tokens: int = 256
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")
        if self.top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {self.top_k}")
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be > 0, got {self.max_tokens}")

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "GenerationConfig":
        gen_cfg = d.get("generation", d)
        return cls(
            temperature=float(gen_cfg.get("temperature", cls.temperature)),
            top_k=int(gen_cfg.get("top_k", cls.top_k)),
            max_tokens=int(gen_cfg.get("max_tokens", cls.max_tokens)),
            seed=gen_cfg.get("seed", cls.seed),
        )


@dataclass
class LlmConfig:
    """Fallback shape information for text models.

    Used whenever the loaded graph declares symbolic dimensions.
    """

    max_seq_len: int = 512
    vocab_size: int = 32000
    pad_token_id: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "LlmConfig":
        llm_cfg = d.get("llm", d)
        return cls(
            max_seq_len=llm_cfg.get(
                "max_seq_len", llm_cfg.get("max_position_embeddings", cls.max_seq_len)
            ),
            vocab_size=llm_cfg.get("vocab_size", cls.vocab_size),
            pad_token_id=llm_cfg.get("pad_token_id", cls.pad_token_id),
        )


@dataclass
class WhisperConfig:
    """Whisper front-end parameters and control-token layout."""

    sample_rate: int = 16_000
    chunk_seconds: int = 30
    n_mels: int = 80
    n_fft: int = 400
    hop_length: int = 160
    multilingual: bool = False

    @property
    def n_samples(self) -> int:
        """Fixed number of samples fed to the feature extractor."""
        return self.sample_rate * self.chunk_seconds

    @property
    def token_eot(self) -> int:
        return 50257 if self.multilingual else 50256

    @property
    def token_translate(self) -> int:
        return 50358 if self.multilingual else 50357

    @property
    def token_transcribe(self) -> int:
        return 50359 if self.multilingual else 50358

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "WhisperConfig":
        whisper_cfg = d.get("whisper", d)
        return cls(
            sample_rate=whisper_cfg.get("sample_rate", cls.sample_rate),
            chunk_seconds=whisper_cfg.get("chunk_seconds", cls.chunk_seconds),
            n_mels=whisper_cfg.get("num_mel_bins", whisper_cfg.get("n_mels", cls.n_mels)),
            n_fft=whisper_cfg.get("n_fft", cls.n_fft),
            hop_length=whisper_cfg.get("hop_length", cls.hop_length),
            multilingual=whisper_cfg.get(
                "multilingual", whisper_cfg.get("vocab_size", 0) >= 51865
            ),
        )


@dataclass
class ModelConfig:
    """Top-level configuration read from a model directory."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    llm: LlmConfig = field(default_factory=LlmConfig)
    whisper: WhisperConfig = field(default_factory=WhisperConfig)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ModelConfig":
        return cls(
            engine=EngineConfig.from_dict(d),
            generation=GenerationConfig.from_dict(d),
            llm=LlmConfig.from_dict(d),
            whisper=WhisperConfig.from_dict(d),
        )

    @classmethod
    def from_pretrained(cls, model_path: str | Path) -> "ModelConfig":
        """Load config from a local directory or HuggingFace Hub model ID.

        A directory without ``config.json`` yields the defaults.  Anything
        that is not a directory is treated as a Hub ``repo_id`` and its
        ``config.json`` is downloaded.
        """
        path = Path(model_path)
        if path.is_dir():
            config_file = path / "config.json"
            if not config_file.exists():
                return cls()
            d = json.loads(config_file.read_text(encoding="utf-8"))
        else:
            from huggingface_hub import hf_hub_download

            config_file = hf_hub_download(
                repo_id=str(model_path), filename="config.json"
            )
            d = json.loads(Path(config_file).read_text(encoding="utf-8"))

        return cls.from_dict(d)


def resolve_model_dir(model_id_or_path: str | Path, **kwargs) -> Path:
    """Return a local model directory, downloading a Hub repo if needed.

    Extra keyword arguments are passed to ``snapshot_download``.
    """
    path = Path(model_id_or_path)
    if not path.is_dir():
        from huggingface_hub import snapshot_download

        path = Path(snapshot_download(repo_id=str(model_id_or_path), **kwargs))
    return path
