"""Script-aware token estimation.

No tokenizer is shipped with the extension, so token counts are approximated
from character counts: CJK ideographs and kana pack far more meaning per
character than Latin text, so each script run gets its own divisor.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

# CJK Unified Ideographs (+ Extension A), compatibility ideographs, kana,
# Hangul syllables and CJK/fullwidth punctuation.
_CJK_RE = re.compile(
    "[\u3000-\u303f\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff"
    "\uac00-\ud7af\uf900-\ufaff\uff00-\uffef]"
)


@dataclass(frozen=True)
class TokenDensity:
    """Characters per token for each script family."""

    cjk_chars_per_token: float = 1.5
    latin_chars_per_token: float = 4.0

    def __post_init__(self) -> None:
        if self.cjk_chars_per_token <= 0 or self.latin_chars_per_token <= 0:
            raise ValueError("characters-per-token divisors must be positive")


DEFAULT_DENSITY = TokenDensity()


def count_script_chars(text: str) -> tuple[int, int]:
    """Return ``(cjk_chars, other_chars)`` for *text*."""
    cjk = len(_CJK_RE.findall(text))
    return cjk, len(text) - cjk


def estimate_token_count(text: str, density: TokenDensity = DEFAULT_DENSITY) -> int:
    """Estimate the number of tokens *text* will cost a provider.

    Deterministic and monotonic: appending characters never lowers the estimate.
    The empty string costs 0 tokens.
    """
    if not text:
        return 0
    return tokens_for_counts(*count_script_chars(text), density)


def tokens_for_counts(cjk: int, other: int, density: TokenDensity = DEFAULT_DENSITY) -> int:
    """Token estimate for a text with the given per-script character counts."""
    return math.ceil(cjk / density.cjk_chars_per_token + other / density.latin_chars_per_token)
