"""
Ticket sentiment for routing (negative sentiment escalates to senior agents).

Uses a pre-trained binary sentiment classifier (SST-2); a class is reported only
when its probability reaches SENTIMENT_CONFIDENCE, otherwise the ticket is neutral.
If the model is disabled or fails, a keyword baseline is used instead.
"""

import logging
import re

from helpdesk.config import SENTIMENT_CONFIDENCE, SENTIMENT_MODEL, SENTIMENT_USE_TRANSFORMER
from helpdesk.models import Sentiment

logger = logging.getLogger(__name__)

# Lazy-loaded model and tokenizer
_model = None
_tokenizer = None

NEGATIVE_PATTERN = re.compile(
    r"\b(?:angry|frustrated|frustrating|terrible|awful|unacceptable|furious|worst|disappointed|ridiculous)\b",
    re.IGNORECASE,
)
POSITIVE_PATTERN = re.compile(
    r"\b(?:great|awesome|excellent|love|thanks|thank you|amazing|wonderful)\b",
    re.IGNORECASE,
)


def _get_model(model_name: str = SENTIMENT_MODEL):
    global _model, _tokenizer
    if _model is None:
        from transformers import AutoModelForSequenceClassification, AutoTokenizer

        _tokenizer = AutoTokenizer.from_pretrained(model_name)
        _model = AutoModelForSequenceClassification.from_pretrained(model_name)
        _model.eval()
    return _model, _tokenizer


def baseline_sentiment(text: str) -> Sentiment:
    """Keyword heuristic; negative words win over positive ones."""
    if NEGATIVE_PATTERN.search(text):
        return Sentiment.NEGATIVE
    if POSITIVE_PATTERN.search(text):
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def transformer_sentiment(text: str, model_name: str = SENTIMENT_MODEL, max_length: int = 512) -> Sentiment:
    import torch

    model, tokenizer = _get_model(model_name)
    inputs = tokenizer(
        text.strip(),
        return_tensors="pt",
        truncation=True,
        max_length=max_length,
        padding=True,
    )
    with torch.no_grad():
        logits = model(**inputs).logits

    # SST-2: index 0 = negative, 1 = positive
    probs = torch.softmax(logits, dim=-1).squeeze()
    neg_prob = float(probs[0].item())
    pos_prob = float(probs[1].item())
    if neg_prob >= SENTIMENT_CONFIDENCE:
        return Sentiment.NEGATIVE
    if pos_prob >= SENTIMENT_CONFIDENCE:
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def detect_sentiment(text: str) -> Sentiment:
    """Sentiment of the ticket text. Never raises."""
    if not text or not text.strip():
        return Sentiment.NEUTRAL
    if SENTIMENT_USE_TRANSFORMER:
        try:
            return transformer_sentiment(text)
        except Exception as e:
            logger.warning("Sentiment model unavailable (%s); using keyword baseline.", e)
    return baseline_sentiment(text)
