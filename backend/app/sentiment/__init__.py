"""Sentiment annotation for outgoing chat messages.

Services:
    - SentimentAnnotator: bounded, fail-open scoring step used by the hub.
    - TextAnalyticsSentimentScorer: HTTP scorer for a Text Analytics endpoint.
"""
