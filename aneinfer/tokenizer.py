"""Byte-level BPE tokenizer using the GPT-2 byte-to-character mapping."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from functools import lru_cache

_EOS_STRINGS = frozenset(
    {
        "<|endoftext|>",
        "<|im_end|>",
        "<|end|>",
        "</s>",
        "<|eot_id|>",
        "<|end_of_text|>",
    }
)


def _passes_through(b: int) -> bool:
    return 0x21 <= b <= 0x7E or 0xA1 <= b <= 0xAC or 0xAE <= b <= 0xFF


@lru_cache(maxsize=1)
def _byte_table() -> tuple[str, ...]:
    table = [chr(b) if _passes_through(b) else "" for b in range(256)]
    shifted = (b for b in range(256) if not _passes_through(b))
    for n, b in enumerate(shifted):
        table[b] = chr(256 + n)
    return tuple(table)


@lru_cache(maxsize=1)
def _char_table() -> dict[str, int]:
    return {c: b for b, c in enumerate(_byte_table())}


def byte_to_unicode() -> list[str]:
    """Character for each byte value; no byte maps to whitespace or a control character."""
    return list(_byte_table())


def unicode_to_byte() -> dict[str, int]:
    """Inverse of :func:`byte_to_unicode`."""
    return dict(_char_table())


class BpeTokenizer:
    """Encodes text with ranked merge rules and decodes token ids back to text."""

    def __init__(
        self,
        vocab: list[str],
        merge_rank: dict[tuple[str, str], int],
        eos_id: int | None,
    ) -> None:
        self.vocab = vocab
        self.eos_id = eos_id
        self._token_to_id = {tok: i for i, tok in enumerate(vocab)}
        self._merge_rank = merge_rank

    @classmethod
    def from_gguf(
        cls,
        token_strings: Iterable[str],
        merges: Iterable[str] | None,
        eos_id: int | None,
    ) -> BpeTokenizer:
        """Build from vocabulary strings and ``"a b"`` merge rules (earlier = higher priority)."""
        merge_rank: dict[tuple[str, str], int] = {}
        for rank, rule in enumerate(merges or ()):
            left, sep, right = rule.partition(" ")
            if sep:
                merge_rank[(left, right)] = rank
        return cls(list(token_strings), merge_rank, eos_id)

    def encode(self, text: str) -> list[int]:
        """Token ids for ``text``; pieces missing from the vocabulary are dropped."""
        if not text:
            return []
        table = _byte_table()
        tokens = [table[b] for b in text.encode("utf-8")]

        if self._merge_rank:
            while len(tokens) >= 2:
                candidates = (
                    (rank, i)
                    for i, pair in enumerate(zip(tokens, tokens[1:]))
                    if (rank := self._merge_rank.get(pair)) is not None
                )
                best = min(candidates, default=None)
                if best is None:
                    break
                _, idx = best
                tokens[idx : idx + 2] = [tokens[idx] + tokens[idx + 1]]

        return [self._token_to_id[t] for t in tokens if t in self._token_to_id]

    def decode(self, ids: Iterable[int]) -> str:
        """Text for token ids; unknown ids are skipped and invalid UTF-8 is replaced."""
        chars = _char_table()
        out = bytearray()
        for token_id in ids:
            if not 0 <= token_id < len(self.vocab):
                continue
            for ch in self.vocab[token_id]:
                byte = chars.get(ch)
                if byte is None:
                    out += ch.encode("utf-8")
                else:
                    out.append(byte)
        return out.decode("utf-8", errors="replace")

    def is_eos(self, id: int) -> bool:
        """True for the configured EOS id or any well-known end-of-sequence token."""
        if self.eos_id is not None and id == self.eos_id:
            return True
        if 0 <= id < len(self.vocab):
            return self.vocab[id] in _EOS_STRINGS
        return False

    @property
    def vocab_size(self) -> int:
        return len(self.vocab)


def _vocab_from(tokens: Sequence[str]) -> list[str]:
    return list(tokens)