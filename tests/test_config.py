# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Tests for configuration dataclasses."""

from __future__ import annotations

import json

import huggingface_hub
import pytest

from pocket_infer.config import (
    ACCELERATOR_PROVIDERS,
    EngineConfig,
    GenerationConfig,
    LlmConfig,
    ModelConfig,
    WhisperConfig,
    resolve_model_dir,
)


class TestGenerationConfig:
    def test_defaults(self):
        cfg = GenerationConfig()
        assert cfg.temperature == 0.7
        assert cfg.top_k == 40
        assert cfg.max_tokens == 256
        assert cfg.seed is None

    @pytest.mark.parametrize(
        "kwargs",
        [{"temperature": -0.1}, {"top_k": -1}, {"max_tokens": 0}],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            GenerationConfig(**kwargs)

    def test_frozen(self):
        cfg = GenerationConfig()
        with pytest.raises(AttributeError):
            cfg.temperature = 1.0  # type: ignore[misc]

    def test_from_dict_nested(self):
        cfg = GenerationConfig.from_dict({"generation": {"temperature": 0, "top_k": 5}})
        assert cfg.temperature == 0.0
        assert cfg.top_k == 5
        assert cfg.max_tokens == 256


class TestEngineConfig:
    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.prefer_accelerator is True
        assert cfg.num_threads is None
        assert cfg.accelerator_providers == ACCELERATOR_PROVIDERS

    def test_from_dict(self):
        cfg = EngineConfig.from_dict(
            {"engine": {"prefer_accelerator": False, "num_threads": 2,
                        "accelerator_providers": ["CoreMLExecutionProvider"]}}
        )
        assert cfg.prefer_accelerator is False
        assert cfg.num_threads == 2
        assert cfg.accelerator_providers == ("CoreMLExecutionProvider",)


class TestLlmConfig:
    def test_defaults(self):
        cfg = LlmConfig()
        assert (cfg.max_seq_len, cfg.vocab_size, cfg.pad_token_id) == (512, 32000, 0)

    def test_hf_style_keys(self):
        cfg = LlmConfig.from_dict({"max_position_embeddings": 2048, "vocab_size": 151936})
        assert cfg.max_seq_len == 2048
        assert cfg.vocab_size == 151936


class TestWhisperConfig:
    def test_front_end_constants(self):
        cfg = WhisperConfig()
        assert cfg.n_samples == 480_000
        assert cfg.n_mels == 80
        assert cfg.n_samples // cfg.hop_length == 3000

    def test_token_layouts(self):
        en = WhisperConfig()
        multi = WhisperConfig(multilingual=True)
        assert (en.token_eot, en.token_translate, en.token_transcribe) == (50256, 50357, 50358)
        assert (multi.token_eot, multi.token_translate, multi.token_transcribe) == (
            50257,
            50358,
            50359,
        )

    def test_multilingual_from_vocab_size(self):
        assert WhisperConfig.from_dict({"vocab_size": 51865}).multilingual
        assert not WhisperConfig.from_dict({"vocab_size": 51864}).multilingual
        assert WhisperConfig.from_dict({"num_mel_bins": 128}).n_mels == 128


class TestModelConfig:
    def test_from_dict_sections(self):
        cfg = ModelConfig.from_dict(
            {
                "engine": {"num_threads": 4},
                "generation": {"max_tokens": 16},
                "llm": {"max_seq_len": 128},
                "whisper": {"multilingual": True},
            }
        )
        assert cfg.engine.num_threads == 4
        assert cfg.generation.max_tokens == 16
        assert cfg.llm.max_seq_len == 128
        assert cfg.whisper.multilingual

    def test_local_directory(self, tmp_path):
        (tmp_path / "config.json").write_text(
            json.dumps({"llm": {"vocab_size": 8}}), encoding="utf-8"
        )
        cfg = ModelConfig.from_pretrained(tmp_path)
        assert cfg.llm.vocab_size == 8

    def test_directory_without_config(self, tmp_path):
        cfg = ModelConfig.from_pretrained(tmp_path)
        assert cfg == ModelConfig()

    def test_hub_download(self, tmp_path, monkeypatch):
        config_file = tmp_path / "downloaded.json"
        config_file.write_text(json.dumps({"max_tokens": 3}), encoding="utf-8")
        calls = []

        def fake_download(repo_id, filename):
            calls.append((repo_id, filename))
            return str(config_file)

        monkeypatch.setattr(huggingface_hub, "hf_hub_download", fake_download)
        cfg = ModelConfig.from_pretrained("someone/tiny-model")
        assert calls == [("someone/tiny-model", "config.json")]
        assert cfg.generation.max_tokens == 3


class TestResolveModelDir:
    def test_local_directory(self, tmp_path, monkeypatch):
        def no_download(**kwargs):
            raise AssertionError("should not download")

        monkeypatch.setattr(huggingface_hub, "snapshot_download", no_download)
        assert resolve_model_dir(tmp_path) == tmp_path

    def test_hub_repo(self, tmp_path, monkeypatch):
        calls = []

        def fake_snapshot(repo_id, **kwargs):
            calls.append((repo_id, kwargs))
            return str(tmp_path)

        monkeypatch.setattr(huggingface_hub, "snapshot_download", fake_snapshot)
        assert resolve_model_dir("someone/tiny-model", revision="main") == tmp_path
        assert calls == [("someone/tiny-model", {"revision": "main"})]
