from __future__ import annotations

import logging

from chatsync.features.shared.diagnostics import SyncDiagnostics, log_diagnostics
from chatsync.features.shared.text_sanitize import (
    log_sanitization_stats,
    sanitize_optional_text,
    sanitize_text,
)


def test_sanitize_text_removes_nul_and_replaces_surrogates():
    cleaned, stats = sanitize_text("ab\x00c\ud800d", strip=False)
    assert cleaned == "abc\ufffdd"
    assert stats.nul_removed == 1
    assert stats.surrogates_replaced == 1
    assert stats.changed is True


def test_sanitize_text_normalizes_crlf_and_cr():
    cleaned, stats = sanitize_text("a\r\nb\rc\n", strip=False)
    assert cleaned == "a\nb\nc\n"
    assert stats.newlines_normalized == 2


def test_single_line_collapses_whitespace_for_titles():
    cleaned, stats = sanitize_text("  Weekly \n\t sync  ", strip=True, single_line=True)
    assert cleaned == "Weekly sync"
    assert stats.whitespace_collapsed is True


def test_streamed_text_keeps_surrounding_whitespace():
    cleaned, stats = sanitize_text(" chunk ", strip=False)
    assert cleaned == " chunk "
    assert stats.changed is False


def test_sanitize_optional_text_handles_none():
    cleaned, stats = sanitize_optional_text(None, strip=True)
    assert cleaned is None
    assert stats.changed is False


def test_log_helpers_only_log_when_something_changed(caplog):
    logger = logging.getLogger("chatsync.tests.sanitize")
    diagnostics = SyncDiagnostics()
    with caplog.at_level(logging.DEBUG, logger=logger.name):
        _, unchanged = sanitize_text("plain", strip=False)
        log_sanitization_stats(logger, location="test.plain", stats=unchanged)
        log_diagnostics(logger, location="test.idle", diagnostics=diagnostics)
        assert caplog.records == []

        diagnostics.rollbacks = 2
        log_diagnostics(logger, location="test.busy", diagnostics=diagnostics)

    assert "rollbacks=2" in caplog.text
    diagnostics.reset()
    assert diagnostics.as_dict()["rollbacks"] == 0
