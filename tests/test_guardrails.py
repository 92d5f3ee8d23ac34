import pytest

from safespace.core.guardrails import CRISIS_PHRASES, MAX_MESSAGE_LENGTH, check_input, is_crisis


def test_crisis_examples():
    assert is_crisis("I want to DIE today") is True
    assert is_crisis("I had a long day") is False


@pytest.mark.parametrize("phrase", CRISIS_PHRASES)
def test_every_phrase_matches_inside_text_in_any_case(phrase):
    assert is_crisis(f"honestly... {phrase.upper()} and i don't know") is True


@pytest.mark.parametrize("text", [
    "",
    "I feel anxious about work",
    "my plant died",
    "the deadline is killing me",
])
def test_ordinary_messages_are_not_crisis(text):
    assert is_crisis(text) is False


def test_check_input_rejects_empty_and_oversized():
    assert check_input("   ").allowed is False
    result = check_input("x" * (MAX_MESSAGE_LENGTH + 1))
    assert result.allowed is False
    assert "too long" in result.reason
    assert check_input("hello").allowed is True
