from __future__ import annotations

import logging
import re
from dataclasses import dataclass

_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass
class SanitizationStats:
    nul_removed: int = 0
    surrogates_replaced: int = 0
    newlines_normalized: int = 0
    whitespace_collapsed: bool = False

    @property
    def changed(self) -> bool:
        return (
            self.nul_removed > 0
            or self.surrogates_replaced > 0
            or self.newlines_normalized > 0
            or self.whitespace_collapsed
        )


def sanitize_text(
    value: str,
    *,
    strip: bool,
    normalize_newlines: bool = True,
    single_line: bool = False,
) -> tuple[str, SanitizationStats]:
    stats = SanitizationStats()
    chars: list[str] = []
    index = 0
    length = len(value)

    while index < length:
        char = value[index]
        index += 1

        if char == "\x00":
            stats.nul_removed += 1
            continue

        if 0xD800 <= ord(char) <= 0xDFFF:
            chars.append("\uFFFD")
            stats.surrogates_replaced += 1
            continue

        if normalize_newlines and char == "\r":
            if index < length and value[index] == "\n":
                index += 1
            chars.append("\n")
            stats.newlines_normalized += 1
            continue

        chars.append(char)

    sanitized = "".join(chars)
    if single_line:
        collapsed = _WHITESPACE_RUN.sub(" ", sanitized)
        stats.whitespace_collapsed = collapsed != sanitized
        sanitized = collapsed
    if strip:
        sanitized = sanitized.strip()
    return sanitized, stats


def sanitize_optional_text(
    value: str | None,
    *,
    strip: bool,
    single_line: bool = False,
) -> tuple[str | None, SanitizationStats]:
    if value is None:
        return None, SanitizationStats()
    return sanitize_text(value, strip=strip, single_line=single_line)


def log_sanitization_stats(
    logger: logging.Logger,
    *,
    location: str,
    stats: SanitizationStats,
) -> None:
    if not stats.changed:
        return
    logger.debug(
        (
            "Sanitized text for %s "
            "(nul_removed=%d, surrogates_replaced=%d, newlines_normalized=%d, "
            "whitespace_collapsed=%s)."
        ),
        location,
        stats.nul_removed,
        stats.surrogates_replaced,
        stats.newlines_normalized,
        stats.whitespace_collapsed,
    )


__all__ = [
    "SanitizationStats",
    "log_sanitization_stats",
    "sanitize_optional_text",
    "sanitize_text",
]
