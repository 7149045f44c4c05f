"""
Tests for message moderation and caller identity.
"""

import pytest

from rag_chat_server.moderation import (
    blocked_spam_message,
    client_identifier,
    extract_ip_address,
    is_bot_user_agent,
    is_duplicate,
    is_gibberish,
    validate_message,
)


class TestGibberish:
    """Tests for the gibberish heuristic."""

    @pytest.mark.parametrize("content", ["x", "asdfgh", "abc123def", "12abc34", "qq"])
    def test_flags_gibberish(self, content):
        assert is_gibberish(content) is True

    @pytest.mark.parametrize("content", ["hi", "ok", "hello", "Why", "How much does it cost?"])
    def test_accepts_real_input(self, content):
        assert is_gibberish(content) is False


class TestValidateMessage:
    """Tests for the combined validation result."""

    def test_valid_message(self):
        result = validate_message("What does the program cost?")

        assert result.is_valid is True
        assert result.errors == []
        assert result.reason is None

    def test_empty_message(self):
        result = validate_message("   ")

        assert result.is_valid is False
        assert result.reason == "empty"

    def test_gibberish_message(self):
        result = validate_message("asdfgh")

        assert result.reason == "gibberish"

    def test_gibberish_check_can_be_disabled(self):
        assert validate_message("asdfgh", check_gibberish=False).is_valid is True

    def test_too_long(self):
        result = validate_message("word " * 300, max_length=1000)

        assert result.is_valid is False
        assert result.reason == "too_long"

    def test_duplicate_is_case_insensitive(self):
        result = validate_message(
            "What is the cost?",
            previous_messages=["Hello there", "what is the COST?"],
        )

        assert result.reason == "duplicate"
        assert is_duplicate("a", []) is False

    def test_first_failure_sets_reason(self):
        result = validate_message("asdfgh", previous_messages=["ASDFGH"])

        assert result.reason == "gibberish"
        assert len(result.errors) == 2


class TestCallerIdentity:
    """Tests for IP extraction and the rate-limit identifier."""

    def test_forwarded_for_wins(self):
        headers = {"x-forwarded-for": "203.0.113.5, 10.0.0.1", "x-real-ip": "10.0.0.2"}

        assert extract_ip_address(headers) == "203.0.113.5"

    def test_real_ip_then_unknown(self):
        assert extract_ip_address({"x-real-ip": "10.0.0.2"}) == "10.0.0.2"
        assert extract_ip_address({}) == "unknown"

    def test_identifier_truncates_user_agent(self):
        headers = {"x-real-ip": "10.0.0.2", "user-agent": "M" * 80}

        assert client_identifier(headers) == "10.0.0.2:" + "M" * 50

    def test_bot_user_agents(self):
        assert is_bot_user_agent("Googlebot/2.1") is True
        assert is_bot_user_agent("curl/8.0") is True
        assert is_bot_user_agent("Mozilla/5.0 (X11; Linux x86_64)") is False
        assert is_bot_user_agent(None) is False


def test_blocked_message_rounds_up_minutes():
    assert blocked_spam_message(600) == "Too many invalid messages. You are blocked for 10 minutes."
    assert "1 minutes" in blocked_spam_message(30)
