# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Tokenizers and vocabularies for the text and speech models."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Callable, Mapping, Optional, Protocol, Sequence, Union

from .config import WhisperConfig

logger = logging.getLogger(__name__)

# SentencePiece word-boundary marker
_SP_SPACE = "▁"

_BOS_NAMES = ("<s>", "<bos>", "[BOS]")
_EOS_NAMES = ("</s>", "<eos>", "[EOS]")
_PAD_NAMES = ("<pad>", "[PAD]")
_UNK_NAMES = ("<unk>", "[UNK]")

# Candidate end-of-sequence tokens for HuggingFace tokenizer.json files
_HF_EOS_NAMES = _EOS_NAMES + ("<|endoftext|>", "<|im_end|>", "<|eot_id|>")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class Vocabulary(Protocol):
    """Token-to-text lookup with the transcriber's control tokens."""

    token_eot: int
    token_transcribe: int
    token_translate: int

    def word_for_token(self, token_id: int) -> str: ...


class TextTokenizer(Protocol):
    """What the text generation service needs from a tokenizer."""

    eos_id: int

    def encode(self, text: str, add_bos: bool = True) -> list[int]: ...

    def decode(self, token_ids: Sequence[int], skip_special_tokens: bool = True) -> str: ...

    def decode_token(self, token_id: int) -> str: ...

    def is_eos(self, token_id: int) -> bool: ...


# ---------------------------------------------------------------------------
# HuggingFace tokenizers loading
# ---------------------------------------------------------------------------

def _load_hf_tokenizer(path: str | Path):
    """Load a ``tokenizers.Tokenizer`` from a file or model directory.

    *path* may be a ``tokenizer.json`` file, a ``vocab.json`` file with a
    ``merges.txt`` beside it, or a directory holding either.
    """
    from tokenizers import Tokenizer as HFTokenizer

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tokenizer path not found: {path}")
    if path.is_file() and path.name != "vocab.json":
        return HFTokenizer.from_file(str(path))

    model_dir = path if path.is_dir() else path.parent
    tokenizer_file = model_dir / "tokenizer.json"
    vocab_file = model_dir / "vocab.json"
    merges_file = model_dir / "merges.txt"

    if tokenizer_file.exists() and path.name != "vocab.json":
        return HFTokenizer.from_file(str(tokenizer_file))

    if vocab_file.exists() and merges_file.exists():
        from tokenizers.decoders import ByteLevel as ByteLevelDecoder
        from tokenizers.models import BPE
        from tokenizers.pre_tokenizers import ByteLevel

        vocab = json.loads(vocab_file.read_text(encoding="utf-8"))
        merges_lines = merges_file.read_text(encoding="utf-8").splitlines()
        if merges_lines and merges_lines[0].startswith("#"):
            merges_lines = merges_lines[1:]
        merges = [tuple(line.split()) for line in merges_lines if line.strip()]

        tok = HFTokenizer(BPE(vocab=vocab, merges=merges))  # type: ignore[arg-type]
        tok.pre_tokenizer = ByteLevel(add_prefix_space=False)
        tok.decoder = ByteLevelDecoder()
        return tok

    raise FileNotFoundError(
        f"No tokenizer.json or vocab.json+merges.txt found for {path}"
    )


# ---------------------------------------------------------------------------
# Plain vocabulary-file tokenizer
# ---------------------------------------------------------------------------

class VocabTokenizer:
    """Word-level tokenizer over a plain-text vocabulary.

    The vocabulary file holds one token per line, optionally followed by a
    tab- or space-separated score.  Line order defines token IDs.  Encoding
    looks up whole words (with and without a leading word-boundary marker)
    and falls back to single characters, then to the unknown token.  It is
    not a SentencePiece or BPE implementation.
    """

    def __init__(self, tokens: Sequence[str]) -> None:
        self._token_to_id: dict[str, int] = {}
        self._id_to_token: dict[int, str] = {}

        self.bos_token, self.bos_id = "<s>", 1
        self.eos_token, self.eos_id = "</s>", 2
        self.pad_token, self.pad_id = "<pad>", 0
        self.unk_token, self.unk_id = "<unk>", 3

        for token_id, token in enumerate(tokens):
            self._token_to_id[token] = token_id
            self._id_to_token[token_id] = token
            if token in _BOS_NAMES:
                self.bos_token, self.bos_id = token, token_id
            elif token in _EOS_NAMES:
                self.eos_token, self.eos_id = token, token_id
            elif token in _PAD_NAMES:
                self.pad_token, self.pad_id = token, token_id
            elif token in _UNK_NAMES:
                self.unk_token, self.unk_id = token, token_id

    @classmethod
    def from_file(cls, vocab_path: str | Path) -> "VocabTokenizer":
        """Read a vocabulary file.  Blank lines are skipped."""
        vocab_path = Path(vocab_path)
        if not vocab_path.exists():
            raise FileNotFoundError(f"Vocab file not found: {vocab_path}")

        tokens = []
        for line in vocab_path.read_text(encoding="utf-8").splitlines():
            parts = re.split(r"[\t ]", line.strip())
            if parts[0]:
                tokens.append(parts[0])

        tokenizer = cls(tokens)
        logger.debug(
            "Loaded vocab with %d tokens. BOS=%d, EOS=%d",
            tokenizer.vocab_size,
            tokenizer.bos_id,
            tokenizer.eos_id,
        )
        return tokenizer

    # ------------------------------------------------------------------

    @property
    def vocab_size(self) -> int:
        return len(self._id_to_token)

    def token_to_id(self, token: str) -> Optional[int]:
        return self._token_to_id.get(token)

    def encode(self, text: str, add_bos: bool = True) -> list[int]:
        """Encode *text* word by word with character fallback."""
        ids: list[int] = [self.bos_id] if add_bos else []

        for word in re.split(r"\s+", text):
            if not word:
                continue
            for candidate in (_SP_SPACE + word, " " + word, word):
                if candidate in self._token_to_id:
                    ids.append(self._token_to_id[candidate])
                    break
            else:
                ids.extend(self._token_to_id.get(ch, self.unk_id) for ch in word)

        return ids

    def _is_special(self, token_id: int) -> bool:
        return token_id in (self.bos_id, self.eos_id, self.pad_id)

    def decode(self, token_ids: Sequence[int], skip_special_tokens: bool = True) -> str:
        pieces = [
            self._id_to_token.get(t, self.unk_token)
            for t in token_ids
            if not (skip_special_tokens and self._is_special(t))
        ]
        return "".join(pieces).replace(_SP_SPACE, " ").strip()

    def decode_token(self, token_id: int) -> str:
        """Text of a single token, for streaming.  Special tokens map to ``""``."""
        if self._is_special(token_id):
            return ""
        return self._id_to_token.get(token_id, self.unk_token).replace(_SP_SPACE, " ")

    def is_eos(self, token_id: int) -> bool:
        return token_id == self.eos_id


# ---------------------------------------------------------------------------
# BPE tokenizer (HuggingFace tokenizers)
# ---------------------------------------------------------------------------

class BpeTokenizer:
    """Thin wrapper around HuggingFace tokenizers for text models.

    Parameters
    ----------
    model_path:
        A ``tokenizer.json`` file, or a directory containing ``tokenizer.json``
        or ``vocab.json`` and ``merges.txt``.
    """

    def __init__(self, model_path: str | Path) -> None:
        self._tok = _load_hf_tokenizer(model_path)
        self.bos_id = self._first_known(_BOS_NAMES)
        eos_id = self._first_known(_HF_EOS_NAMES)
        if eos_id is None:
            raise ValueError(f"No end-of-sequence token found in {model_path}")
        self.eos_id = eos_id

    def _first_known(self, names: Sequence[str]) -> Optional[int]:
        for name in names:
            token_id = self._tok.token_to_id(name)
            if token_id is not None:
                return token_id
        return None

    # ------------------------------------------------------------------

    @property
    def vocab_size(self) -> int:
        return self._tok.get_vocab_size()

    def encode(self, text: str, add_bos: bool = True) -> list[int]:
        """Encode *text* to a list of token IDs."""
        ids = self._tok.encode(text, add_special_tokens=False).ids
        if add_bos and self.bos_id is not None:
            ids = [self.bos_id] + ids
        return ids

    def decode(self, token_ids: Sequence[int], skip_special_tokens: bool = True) -> str:
        """Decode a list of token IDs back to a string."""
        return self._tok.decode(list(token_ids), skip_special_tokens=skip_special_tokens)

    def decode_token(self, token_id: int) -> str:
        return self._tok.decode([token_id], skip_special_tokens=True)

    def is_eos(self, token_id: int) -> bool:
        return token_id == self.eos_id


def load_tokenizer(vocab_path: str | Path) -> Union[VocabTokenizer, BpeTokenizer]:
    """Pick a tokenizer implementation from the vocabulary file type.

    ``.json`` files and directories use ``BpeTokenizer``; other files are
    plain vocabularies.  SentencePiece ``.model`` files are not supported.
    """
    vocab_path = Path(vocab_path)
    if vocab_path.suffix.lower() == ".model":
        raise ValueError(f"SentencePiece .model files are not supported: {vocab_path}")
    if vocab_path.is_dir() or vocab_path.suffix.lower() == ".json":
        return BpeTokenizer(vocab_path)
    return VocabTokenizer.from_file(vocab_path)


# ---------------------------------------------------------------------------
# Whisper vocabulary
# ---------------------------------------------------------------------------

class WhisperVocab:
    """Whisper token-to-text lookup plus its control-token IDs.

    Parameters
    ----------
    lookup:
        Either a mapping of token ID to text or a callable doing the lookup.
        Unknown IDs map to ``""`` when a mapping is given.
    multilingual:
        Selects the multilingual control-token layout.
    """

    def __init__(
        self,
        lookup: Union[Mapping[int, str], Callable[[int], str]],
        multilingual: bool = False,
    ) -> None:
        self._lookup = lookup
        self.multilingual = multilingual
        layout = WhisperConfig(multilingual=multilingual)
        self.token_eot = layout.token_eot
        self.token_transcribe = layout.token_transcribe
        self.token_translate = layout.token_translate

    @classmethod
    def from_pretrained(cls, path: str | Path, multilingual: bool = False) -> "WhisperVocab":
        """Build the vocabulary from a Whisper tokenizer on disk."""
        tok = _load_hf_tokenizer(path)

        def lookup(token_id: int) -> str:
            return tok.decode([token_id], skip_special_tokens=False)

        return cls(lookup, multilingual=multilingual)

    def word_for_token(self, token_id: int) -> str:
        if callable(self._lookup):
            return self._lookup(token_id)
        return self._lookup.get(token_id, "")
