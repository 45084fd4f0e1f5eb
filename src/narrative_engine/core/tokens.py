from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

_tokenizer = None
_tokenizer_failed = False
_TOKENIZER_MODEL_ID = "gpt2"


def _get_tokenizer():
    """Return the cached tokenizer, loading on first call."""
    global _tokenizer, _tokenizer_failed
    if _tokenizer is None and not _tokenizer_failed:
        try:
            from transformers import AutoTokenizer

            _tokenizer = AutoTokenizer.from_pretrained(_TOKENIZER_MODEL_ID)
            logger.info("Tokenizer loaded from %s", _TOKENIZER_MODEL_ID)
        except Exception as exc:
            _tokenizer_failed = True
            logger.warning("Failed to load tokenizer: %s", exc)
    return _tokenizer


def count_tokens(text: str) -> int:
    """Return the token count of ``text`` for context budgeting.

    Falls back to ``len(text) // 4`` if the tokenizer is unavailable.
    """
    tok = _get_tokenizer()
    if tok is None:
        return len(text) // 4
    return len(tok.encode(text))


def estimate_tokens(text: str) -> int:
    return len(text) // 4
