# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Shared fixtures: tiny ONNX graphs and vocabularies built on the fly."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import onnx
import pytest
from onnx import TensorProto, helper, numpy_helper

from pocket_infer.config import EngineConfig, ModelConfig

VOCAB_SIZE = 8

# Line order defines IDs: pad=0, bos=1, eos=7
VOCAB_LINES = [
    "<pad>",
    "<s>",
    "▁hello\t-1.0",
    "▁world\t-2.0",
    "▁foo\t-3.0",
    "▁bar\t-4.0",
    "▁baz\t-5.0",
    "</s>",
]


def _finish(graph: onnx.GraphProto) -> onnx.ModelProto:
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 17)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    return model


def make_lm_model(
    vocab_size: int = VOCAB_SIZE,
    seq_len: Optional[int] = None,
    with_cache: bool = False,
) -> onnx.ModelProto:
    """A "language model" whose next token after ``t`` is ``(t + 1) % vocab_size``.

    Output ``logits`` has shape ``(1, seq, vocab_size)``; row ``i`` scores
    the token following ``input_ids[i]``.  With *with_cache* the graph also
    takes ``past`` of shape ``(1, 4)`` and returns ``present = past + 1``.
    """
    table = np.full((vocab_size, vocab_size), -1.0, dtype=np.float32)
    for t in range(vocab_size):
        table[t, (t + 1) % vocab_size] = 10.0

    seq = seq_len if seq_len is not None else "seq"
    inputs = [helper.make_tensor_value_info("input_ids", TensorProto.INT32, [1, seq])]
    outputs = [
        helper.make_tensor_value_info("logits", TensorProto.FLOAT, [1, seq, vocab_size])
    ]
    nodes = [helper.make_node("Gather", ["table", "input_ids"], ["logits"], axis=0)]
    initializers = [numpy_helper.from_array(table, "table")]

    if with_cache:
        inputs.append(helper.make_tensor_value_info("past", TensorProto.FLOAT, [1, 4]))
        outputs.append(helper.make_tensor_value_info("present", TensorProto.FLOAT, [1, 4]))
        nodes.append(helper.make_node("Add", ["past", "one"], ["present"]))
        initializers.append(numpy_helper.from_array(np.ones(1, dtype=np.float32), "one"))

    return _finish(helper.make_graph(nodes, "tiny_lm", inputs, outputs, initializers))


def make_whisper_model(
    tokens: Sequence[int],
    n_mels: int = 80,
    frames: int = 3000,
) -> onnx.ModelProto:
    """A "transcriber" that always emits *tokens*, whatever the features."""
    inputs = [
        helper.make_tensor_value_info(
            "input_features", TensorProto.FLOAT, [1, n_mels, frames]
        )
    ]
    outputs = [
        helper.make_tensor_value_info("sequences", TensorProto.INT32, [1, len(tokens)])
    ]
    nodes = [
        helper.make_node("ReduceSum", ["input_features"], ["total"], keepdims=0),
        helper.make_node("Mul", ["total", "zero"], ["nothing"]),
        helper.make_node("Cast", ["nothing"], ["nothing_int"], to=TensorProto.INT32),
        helper.make_node("Add", ["token_table", "nothing_int"], ["sequences"]),
    ]
    initializers = [
        numpy_helper.from_array(np.array(0.0, dtype=np.float32), "zero"),
        numpy_helper.from_array(np.array([tokens], dtype=np.int32), "token_table"),
    ]
    return _finish(helper.make_graph(nodes, "tiny_whisper", inputs, outputs, initializers))


def save_model(model: onnx.ModelProto, path: Path) -> Path:
    onnx.save(model, str(path))
    return path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cpu_config() -> ModelConfig:
    return ModelConfig(engine=EngineConfig(prefer_accelerator=False, num_threads=1))


@pytest.fixture
def lm_model_bytes() -> bytes:
    return make_lm_model().SerializeToString()


@pytest.fixture
def lm_model_path(tmp_path) -> Path:
    return save_model(make_lm_model(), tmp_path / "tiny_lm.onnx")


@pytest.fixture
def static_lm_model_path(tmp_path) -> Path:
    return save_model(make_lm_model(seq_len=8), tmp_path / "tiny_lm_static.onnx")


@pytest.fixture
def cache_lm_model_path(tmp_path) -> Path:
    return save_model(make_lm_model(with_cache=True), tmp_path / "tiny_lm_cache.onnx")


@pytest.fixture
def vocab_file(tmp_path) -> Path:
    path = tmp_path / "vocab.txt"
    path.write_text("\n".join(VOCAB_LINES) + "\n", encoding="utf-8")
    return path
