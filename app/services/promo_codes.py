from __future__ import annotations

import re

_PROMO_NORMALIZE_PATTERN = re.compile(r"[\s-]+")
PROMO_CODE_LOG_PREFIX_LENGTH = 4


def normalize_promo_code(raw_code: str) -> str:
    normalized = raw_code.strip().upper()
    return _PROMO_NORMALIZE_PATTERN.sub("", normalized)


def promo_code_log_prefix(normalized_code: str) -> str:
    if len(normalized_code) <= PROMO_CODE_LOG_PREFIX_LENGTH:
        return "*" * len(normalized_code)
    return f"{normalized_code[:PROMO_CODE_LOG_PREFIX_LENGTH]}***"
