"""
Test that wallet_logging can be imported without circular import and logger works.
"""

from __future__ import annotations


def test_logging_import():
    """Import get_logger from wallet_logging and use the logger."""
    from proton_wallet.wallet_logging import bind_account, get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
    # Smoke test: call info (should not raise)
    logger.info("test_message", key="value")
    bind_account("chain:alice").info("test_account_message")


def test_secret_fields_are_redacted():
    from proton_wallet.wallet_logging.logger import REDACTED, _redact_secrets

    event = _redact_secrets(None, "info", {"event": "signed", "private_key": "abc", "signature": "sig", "sid": "s1"})

    assert event["private_key"] == REDACTED
    assert event["signature"] == REDACTED
    assert event["sid"] == "s1"
