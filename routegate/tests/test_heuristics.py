import pytest

from routegate.routing.heuristics import LENGTH_THRESHOLD, classify_heuristic


def test_long_text_is_slow_by_length():
    outcome = classify_heuristic("a" * 1200)
    assert outcome is not None
    assert outcome.use_slow_model is True
    assert outcome.reason == "length"


def test_length_rule_wins_over_keywords():
    text = "legal " + "x" * LENGTH_THRESHOLD
    outcome = classify_heuristic(text)
    assert outcome is not None
    assert outcome.reason == "length"


def test_text_at_threshold_is_not_length_routed():
    assert classify_heuristic("b" * LENGTH_THRESHOLD) is None


@pytest.mark.parametrize(
    "text",
    [
        "Explain the legal implications of X",
        "Need MEDICAL advice",
        "Quick Analysis please",
        "some PhIlOsOpHy question",
        "paralegal work",
    ],
)
def test_keywords_match_case_insensitive_substrings(text):
    outcome = classify_heuristic(text)
    assert outcome is not None
    assert outcome.use_slow_model is True
    assert outcome.reason == "keywords"


def test_plain_text_is_inconclusive():
    assert classify_heuristic("Hi") is None
    assert classify_heuristic("") is None
