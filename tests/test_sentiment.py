import pytest

import helpdesk.sentiment as sentiment
from helpdesk.models import Sentiment
from helpdesk.sentiment import baseline_sentiment, detect_sentiment


@pytest.mark.parametrize(
    "text,expected",
    [
        ("I am so frustrated, the invoice is wrong again", Sentiment.NEGATIVE),
        ("This is UNACCEPTABLE", Sentiment.NEGATIVE),
        ("Thanks, the new dashboard is great", Sentiment.POSITIVE),
        ("Please reset my password", Sentiment.NEUTRAL),
        # negative wins when both appear
        ("Thanks, but this is the worst outage yet", Sentiment.NEGATIVE),
    ],
)
def test_baseline(text, expected):
    assert baseline_sentiment(text) == expected


def test_keywords_match_whole_words_only():
    assert baseline_sentiment("Greatest common divisor API") == Sentiment.NEUTRAL


@pytest.mark.parametrize("text", ["", "   "])
def test_blank_text_is_neutral(text):
    assert detect_sentiment(text) == Sentiment.NEUTRAL


def test_baseline_used_when_model_disabled(monkeypatch):
    monkeypatch.setattr(sentiment, "SENTIMENT_USE_TRANSFORMER", False)

    def boom(text):
        raise AssertionError("model must not be called")

    monkeypatch.setattr(sentiment, "transformer_sentiment", boom)
    assert detect_sentiment("terrible service") == Sentiment.NEGATIVE


def test_model_result_preferred(monkeypatch):
    monkeypatch.setattr(sentiment, "SENTIMENT_USE_TRANSFORMER", True)
    monkeypatch.setattr(sentiment, "transformer_sentiment", lambda text: Sentiment.POSITIVE)
    assert detect_sentiment("terrible service") == Sentiment.POSITIVE


def test_model_failure_falls_back_to_keywords(monkeypatch):
    monkeypatch.setattr(sentiment, "SENTIMENT_USE_TRANSFORMER", True)

    def broken(text):
        raise OSError("model weights not downloaded")

    monkeypatch.setattr(sentiment, "transformer_sentiment", broken)
    assert detect_sentiment("I am furious") == Sentiment.NEGATIVE
