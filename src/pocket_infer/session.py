# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Inference session manager: acquisition with accelerator fallback.

Acquisition is a two-stage attempt.  The accelerator stage is optional and
its failures are absorbed; the CPU stage must succeed.  The outcome is a
tagged ``AcquireResult`` rather than an exception, so callers can see which
path was taken without catching anything.
"""

from __future__ import annotations

import enum
import logging
import mmap
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import numpy as np
import onnxruntime as ort

from .accelerator import available_accelerator
from .buffers import TensorBuffer, numpy_dtype
from .config import ACCELERATOR_PROVIDERS, CPU_PROVIDER, LlmConfig
from .errors import AcceleratorUnavailable, InferenceError, ModelLoadError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model metadata
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TensorSpec:
    """Declared name, shape and element type of one graph input or output.

    Symbolic dimensions are stored as ``None``.
    """

    name: str
    shape: tuple[Optional[int], ...]
    element_type: str

    @property
    def is_static(self) -> bool:
        return all(d is not None for d in self.shape)

    @property
    def dtype(self) -> np.dtype:
        return numpy_dtype(self.element_type)


@dataclass(frozen=True)
class ModelInfo:
    """Shape information read once from a loaded graph."""

    max_seq_len: int = 512
    vocab_size: int = 32000
    inputs: tuple[TensorSpec, ...] = ()
    outputs: tuple[TensorSpec, ...] = ()


def _tensor_spec(arg: Any) -> TensorSpec:
    shape = tuple(d if isinstance(d, int) and d >= 0 else None for d in arg.shape)
    return TensorSpec(name=arg.name, shape=shape, element_type=arg.type)


def extract_model_info(
    session: ort.InferenceSession,
    defaults: Optional[LlmConfig] = None,
) -> ModelInfo:
    """Read max sequence length, vocabulary size and tensor specs.

    ``max_seq_len`` comes from dimension 1 of the first input and
    ``vocab_size`` from the last dimension of the first output, when those
    are concrete.  Anything that cannot be read falls back to *defaults*.
    """
    defaults = defaults or LlmConfig()
    try:
        inputs = tuple(_tensor_spec(arg) for arg in session.get_inputs())
        outputs = tuple(_tensor_spec(arg) for arg in session.get_outputs())
    except Exception as exc:
        logger.warning("Could not extract model info, using defaults: %s", exc)
        return ModelInfo(max_seq_len=defaults.max_seq_len, vocab_size=defaults.vocab_size)

    max_seq_len = defaults.max_seq_len
    vocab_size = defaults.vocab_size

    if inputs and len(inputs[0].shape) >= 2 and inputs[0].shape[1]:
        max_seq_len = inputs[0].shape[1]
    if outputs and len(outputs[0].shape) >= 2 and outputs[0].shape[-1]:
        vocab_size = outputs[0].shape[-1]

    for spec in inputs:
        logger.debug("Input %s shape=%s type=%s", spec.name, spec.shape, spec.element_type)
    for spec in outputs:
        logger.debug("Output %s shape=%s type=%s", spec.name, spec.shape, spec.element_type)

    return ModelInfo(
        max_seq_len=max_seq_len,
        vocab_size=vocab_size,
        inputs=inputs,
        outputs=outputs,
    )


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------

class AcceleratorDelegate:
    """Binding of a session to one hardware execution provider.

    Parameters
    ----------
    provider:
        ONNX Runtime provider name, e.g. ``"CUDAExecutionProvider"``.
    options:
        Provider options passed through to the runtime.
    """

    def __init__(self, provider: str, options: Optional[Mapping[str, Any]] = None) -> None:
        self.provider = provider
        self.options = dict(options or {})
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def provider_entry(self) -> tuple[str, dict[str, Any]]:
        """The ``(name, options)`` pair understood by ``InferenceSession``."""
        if self._closed:
            raise AcceleratorUnavailable(f"{self.provider} delegate is closed")
        return self.provider, self.options

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            logger.debug("Closed accelerator delegate %s", self.provider)

    def __repr__(self) -> str:
        return f"AcceleratorDelegate({self.provider!r}, closed={self._closed})"


@dataclass
class ModelHandle:
    """A loaded graph and the accelerator resources it owns."""

    session: Optional[ort.InferenceSession]
    info: ModelInfo
    num_threads: int
    using_accelerator: bool = False
    delegate: Optional[AcceleratorDelegate] = field(default=None, repr=False)

    @property
    def is_initialized(self) -> bool:
        return self.session is not None

    def __enter__(self) -> "ModelHandle":
        return self

    def __exit__(self, *args) -> None:
        release(self)


class AcquireStatus(enum.Enum):
    ACCELERATED = "accelerated"
    CPU_FALLBACK = "cpu_fallback"
    FAILED = "failed"


@dataclass
class AcquireResult:
    """Tagged outcome of ``acquire``."""

    status: AcquireStatus
    handle: Optional[ModelHandle] = None
    error: Optional[ModelLoadError] = None

    @property
    def ok(self) -> bool:
        return self.handle is not None

    def unwrap(self) -> ModelHandle:
        """Return the handle, or raise the load error of a failed result."""
        if self.handle is None:
            raise self.error or ModelLoadError("Model acquisition failed")
        return self.handle


# ---------------------------------------------------------------------------
# Acquisition and teardown
# ---------------------------------------------------------------------------

def load_model_bytes(path: str | Path) -> bytes:
    """Read a model file through a read-only memory map."""
    path = Path(path)
    try:
        with open(path, "rb") as f, mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mm:
            return mm[:]
    except (OSError, ValueError) as exc:
        raise ModelLoadError(f"Could not read model file {path}: {exc}") from exc


def _build_session(
    model_bytes: bytes,
    num_threads: int,
    delegate: Optional[AcceleratorDelegate],
) -> ort.InferenceSession:
    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    options.intra_op_num_threads = num_threads

    providers: list[Any] = [CPU_PROVIDER]
    if delegate is not None:
        providers.insert(0, delegate.provider_entry())

    return ort.InferenceSession(model_bytes, sess_options=options, providers=providers)


def acquire(
    model_bytes: bytes,
    prefer_accelerator: bool = True,
    num_threads: Optional[int] = None,
    accelerator_providers: Sequence[str] = ACCELERATOR_PROVIDERS,
    defaults: Optional[LlmConfig] = None,
) -> AcquireResult:
    """Load *model_bytes* into a session, preferring an accelerator.

    Parameters
    ----------
    model_bytes:
        Serialized ONNX graph.
    prefer_accelerator:
        Try a hardware execution provider before the CPU path.
    num_threads:
        Intra-op thread hint for both paths.  Defaults to the number of
        available cores.
    accelerator_providers:
        Provider names tried by the capability probe, in order.
    defaults:
        Fallback shape information for graphs with symbolic dimensions.

    Returns
    -------
    AcquireResult
        ``ACCELERATED`` or ``CPU_FALLBACK`` with a handle, or ``FAILED``
        with a ``ModelLoadError``.
    """
    num_threads = num_threads or os.cpu_count() or 1

    if prefer_accelerator:
        provider = available_accelerator(accelerator_providers)
        if provider is not None:
            delegate = AcceleratorDelegate(provider)
            try:
                logger.debug("Attempting accelerator %s", provider)
                session = _build_session(model_bytes, num_threads, delegate)
                if provider not in session.get_providers():
                    raise AcceleratorUnavailable(f"{provider} did not attach to the session")
            except Exception as exc:
                try:
                    delegate.close()
                except Exception as close_exc:
                    logger.warning("Error closing accelerator delegate: %s", close_exc)
                logger.warning("Accelerator %s failed, falling back to CPU: %s", provider, exc)
            else:
                handle = ModelHandle(
                    session=session,
                    info=extract_model_info(session, defaults),
                    num_threads=num_threads,
                    using_accelerator=True,
                    delegate=delegate,
                )
                logger.info("Model loaded with %s (threads=%d)", provider, num_threads)
                return AcquireResult(AcquireStatus.ACCELERATED, handle=handle)

    logger.debug("Using CPU inference (threads=%d)", num_threads)
    try:
        session = _build_session(model_bytes, num_threads, None)
    except Exception as exc:
        error = ModelLoadError(f"Failed to load model on CPU: {exc}")
        error.__cause__ = exc
        logger.error("%s", error)
        return AcquireResult(AcquireStatus.FAILED, error=error)

    handle = ModelHandle(
        session=session,
        info=extract_model_info(session, defaults),
        num_threads=num_threads,
    )
    logger.info("Model loaded on CPU (threads=%d)", num_threads)
    return AcquireResult(AcquireStatus.CPU_FALLBACK, handle=handle)


def load_model(
    path: str | Path,
    prefer_accelerator: bool = True,
    num_threads: Optional[int] = None,
    accelerator_providers: Sequence[str] = ACCELERATOR_PROVIDERS,
    defaults: Optional[LlmConfig] = None,
) -> ModelHandle:
    """Read *path* and acquire a handle for it, raising ``ModelLoadError``."""
    model_bytes = load_model_bytes(path)
    return acquire(
        model_bytes,
        prefer_accelerator=prefer_accelerator,
        num_threads=num_threads,
        accelerator_providers=accelerator_providers,
        defaults=defaults,
    ).unwrap()


def release(handle: Optional[ModelHandle]) -> None:
    """Tear down *handle*: session first, then its accelerator delegate.

    Safe to call more than once.  Errors while closing the delegate are
    logged and dropped.
    """
    if handle is None:
        return

    session, handle.session = handle.session, None
    delegate, handle.delegate = handle.delegate, None

    # InferenceSession has no close(); its resources go with the last reference.
    del session

    if delegate is not None:
        try:
            delegate.close()
        except Exception as exc:
            logger.warning("Error closing accelerator delegate: %s", exc)


# ---------------------------------------------------------------------------
# Forward pass
# ---------------------------------------------------------------------------

def _as_array(value: TensorBuffer | np.ndarray) -> np.ndarray:
    if isinstance(value, TensorBuffer):
        return value.array
    return np.asarray(value)


def run_forward(
    handle: Optional[ModelHandle],
    input_buffer: TensorBuffer | np.ndarray,
    aux_inputs: Optional[Mapping[str, TensorBuffer | np.ndarray]] = None,
    output_names: Optional[Sequence[str]] = None,
) -> np.ndarray | dict[str, np.ndarray]:
    """Run one forward pass.

    Parameters
    ----------
    handle:
        An initialized model handle.
    input_buffer:
        Bound to the graph's first input.
    aux_inputs:
        Extra named inputs, e.g. key/value cache state.
    output_names:
        When given, these outputs are fetched and returned as a dict.
        Otherwise the first output is returned as an array.

    Raises
    ------
    InferenceError
        If the handle is not initialized or the runtime call fails.
    """
    if handle is None or handle.session is None:
        raise InferenceError("Model handle is not initialized")

    if handle.info.inputs:
        input_name = handle.info.inputs[0].name
    else:
        input_name = handle.session.get_inputs()[0].name

    feeds = {input_name: _as_array(input_buffer)}
    for name, value in (aux_inputs or {}).items():
        feeds[name] = _as_array(value)

    fetch = list(output_names) if output_names else None
    try:
        outputs = handle.session.run(fetch, feeds)
    except Exception as exc:
        raise InferenceError(f"Forward pass failed: {exc}") from exc

    if fetch is not None:
        return dict(zip(fetch, outputs))
    return outputs[0]
