# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Tests for the accelerator capability probe."""

from __future__ import annotations

import logging

import onnxruntime as ort

from pocket_infer.accelerator import available_accelerator, is_accelerator_available


class TestAcceleratorProbe:
    def test_cpu_only_runtime(self, monkeypatch):
        monkeypatch.setattr(ort, "get_available_providers", lambda: ["CPUExecutionProvider"])
        assert available_accelerator() is None
        assert is_accelerator_available() is False

    def test_first_preferred_provider_wins(self, monkeypatch):
        monkeypatch.setattr(
            ort,
            "get_available_providers",
            lambda: ["CoreMLExecutionProvider", "CUDAExecutionProvider", "CPUExecutionProvider"],
        )
        assert available_accelerator() == "CUDAExecutionProvider"
        assert available_accelerator(["CoreMLExecutionProvider"]) == "CoreMLExecutionProvider"
        assert is_accelerator_available()

    def test_empty_preference(self, monkeypatch):
        monkeypatch.setattr(ort, "get_available_providers", lambda: ["CUDAExecutionProvider"])
        assert available_accelerator(()) is None

    def test_probe_failure_is_unavailable(self, monkeypatch, caplog):
        def broken():
            raise RuntimeError("driver query crashed")

        monkeypatch.setattr(ort, "get_available_providers", broken)
        with caplog.at_level(logging.WARNING, logger="pocket_infer.accelerator"):
            assert is_accelerator_available() is False
        assert "driver query crashed" in caplog.text

    def test_real_runtime_answers(self):
        # Whatever the host offers, the probe returns a bool without raising.
        assert isinstance(is_accelerator_available(), bool)
