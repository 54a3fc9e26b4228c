# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Token counting for index artifacts.

Reports how many model tokens the text form of an index costs. Uses a
tiktoken encoding (cl100k_base by default), loaded lazily because
get_encoding() may download the encoding file on first use. When the
encoding cannot be loaded, or counting is disabled, a word-based
approximation is used instead.
"""

import logging
from typing import Optional

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"

# Rough approximation for code: ~1.3 tokens per whitespace-separated word
TOKENS_PER_WORD = 1.3


def approximate_token_count(text: str) -> int:
    """Word-based token estimate used when no encoding is available."""
    if not text:
        return 0
    return int(len(text.split()) * TOKENS_PER_WORD)


class TokenCounter:
    """Counts tokens with tiktoken, falling back to an approximation.

    Usage:
        counter = TokenCounter()
        counter.count('{"schema": "codebase"}')

    Pass encoding_name=None to always use the approximation (no network).
    """

    def __init__(self, encoding_name: Optional[str] = DEFAULT_ENCODING):
        self.encoding_name = encoding_name
        # Lazy initialization to avoid network calls in __init__
        self._encoder: Optional[tiktoken.Encoding] = None
        self._load_failed = False

    def _get_encoder(self) -> Optional[tiktoken.Encoding]:
        """Get or initialize the tiktoken encoder.

        Returns:
            tiktoken.Encoding, or None if disabled or unavailable. A failed
            load is not retried.
        """
        if self.encoding_name is None or self._load_failed:
            return None
        if self._encoder is None:
            try:
                self._encoder = tiktoken.get_encoding(self.encoding_name)
            except Exception as e:
                logger.warning(f"Failed to initialize tiktoken encoder '{self.encoding_name}': {e}")
                self._load_failed = True
                return None
        return self._encoder

    @property
    def is_exact(self) -> bool:
        """True when counts come from a real encoding."""
        return self._get_encoder() is not None

    def count(self, text: str) -> int:
        """Count tokens in text (approximate if no encoding is available)."""
        encoder = self._get_encoder()
        if encoder is not None:
            return len(encoder.encode(text, disallowed_special=()))
        return approximate_token_count(text)
