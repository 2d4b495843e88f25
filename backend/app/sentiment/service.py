"""Sentiment annotation step for outgoing chat messages.

The annotator never blocks or fails a send: empty text short-circuits to the
neutral result, and any scorer error or timeout falls back to it as well.

Scores are signed strings with two decimals:
    positive -> "0.00" .. "1.00" (positive confidence)
    negative -> "-1.00" .. "0.00" (negated negative confidence)
    neutral  -> "0.00"
"""
import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class SentimentResult(BaseModel):
    """Normalised annotation attached to a stored message."""
    score: str
    label: SentimentLabel


NEUTRAL_RESULT = SentimentResult(score="0", label=SentimentLabel.NEUTRAL)


class SentimentScores(BaseModel):
    """Raw scorer output: overall label plus per-class confidences."""
    label: str
    positive: float = 0.0
    neutral: float = 0.0
    negative: float = 0.0


class SentimentScorer(Protocol):
    async def analyze(self, text: str) -> SentimentScores: ...


def normalize(scores: SentimentScores) -> SentimentResult:
    """Map raw scorer output onto the signed two-decimal score.

    Labels other than positive and negative (``mixed`` included) are
    reported as neutral.
    """
    label = (scores.label or "").lower()
    if label == SentimentLabel.POSITIVE.value:
        value = min(max(scores.positive, 0.0), 1.0)
        return SentimentResult(score=f"{value:.2f}", label=SentimentLabel.POSITIVE)
    if label == SentimentLabel.NEGATIVE.value:
        value = min(max(scores.negative, 0.0), 1.0)
        score = f"{-value:.2f}" if value > 0 else "0.00"
        return SentimentResult(score=score, label=SentimentLabel.NEGATIVE)
    return SentimentResult(score="0.00", label=SentimentLabel.NEUTRAL)


class SentimentAnnotator:
    """Scores message text with a bounded timeout and a neutral fallback.

    Args:
        scorer: Backend scorer, or None to always return the fallback.
        timeout_seconds: Upper bound for a single scorer call.
    """

    def __init__(self, scorer: Optional[SentimentScorer] = None, timeout_seconds: float = 3.0):
        self._scorer = scorer
        self._timeout = timeout_seconds

    @property
    def enabled(self) -> bool:
        return self._scorer is not None

    async def score(self, text: Optional[str]) -> SentimentResult:
        if not text or not text.strip() or self._scorer is None:
            return NEUTRAL_RESULT

        try:
            scores = await asyncio.wait_for(self._scorer.analyze(text), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Sentiment] Scorer timed out after {self._timeout}s, using neutral")
            return NEUTRAL_RESULT
        except Exception as e:
            logger.warning(f"[Sentiment] Scorer failed, using neutral: {e}")
            return NEUTRAL_RESULT

        return normalize(scores)


class TextAnalyticsSentimentScorer:
    """Scorer backed by a Text Analytics style REST endpoint.

    Sends a single-document request to
    ``POST {endpoint}/text/analytics/v3.1/sentiment`` and reads the first
    document's ``sentiment`` and ``confidenceScores``.
    """

    PATH = "/text/analytics/v3.1/sentiment"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        language: str = "en",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.language = language
        self._api_key = api_key
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def analyze(self, text: str) -> SentimentScores:
        response = await self._client.post(
            f"{self.endpoint}{self.PATH}",
            headers={
                "Ocp-Apim-Subscription-Key": self._api_key,
                "Content-Type": "application/json",
            },
            json={"documents": [{"id": "1", "language": self.language, "text": text}]},
        )
        response.raise_for_status()
        data = response.json()

        documents = data.get("documents") or []
        if not documents:
            errors = data.get("errors") or []
            raise ValueError(f"Sentiment service returned no documents: {errors}")

        document = documents[0]
        confidence = document.get("confidenceScores") or {}
        return SentimentScores(
            label=document.get("sentiment", "neutral"),
            positive=float(confidence.get("positive", 0.0)),
            neutral=float(confidence.get("neutral", 0.0)),
            negative=float(confidence.get("negative", 0.0)),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
