"""
Trip_Sense.integrations.classification_client

HTTP client for an external product-classification service.

Contract (JSON over HTTP POST):
    request:  {"product_name": "...", "category_hint": "..." | null}
    response: {"category": "<section id>", "confidence": 0.0-1.0,
               "shelf_hint": "..." (optional)}

Every failure mode (network error, timeout, non-2xx, malformed JSON, missing
fields) is raised as ClassificationServiceError so callers only need one
except clause.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class ClassificationServiceError(Exception):
    """Raised when the remote classifier cannot produce a usable answer."""


@dataclass(frozen=True)
class RemoteClassification:
    category: str
    confidence: float
    shelf_hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "shelf_hint": self.shelf_hint,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RemoteClassification":
        if not isinstance(data, dict):
            raise ClassificationServiceError("response is not a JSON object")
        category = data.get("category")
        if not category or not isinstance(category, str):
            raise ClassificationServiceError("response missing 'category'")
        try:
            confidence = float(data.get("confidence"))
        except (TypeError, ValueError) as exc:
            raise ClassificationServiceError("response has no numeric 'confidence'") from exc
        confidence = max(0.0, min(1.0, confidence))
        shelf_hint = data.get("shelf_hint")
        return RemoteClassification(
            category=category.strip().lower(),
            confidence=confidence,
            shelf_hint=str(shelf_hint) if shelf_hint else None,
        )


class RemoteClassifier:
    """
    Thin wrapper over requests.post with a bounded timeout.
    """

    def __init__(self, url: str, timeout: float = 3.0, session: Optional[requests.Session] = None) -> None:
        if not url:
            raise ValueError("RemoteClassifier requires a service URL")
        self.url = url
        self.timeout = float(timeout)
        self._session = session or requests.Session()

    def classify(self, product_name: str, category_hint: Optional[str] = None) -> RemoteClassification:
        payload = {"product_name": product_name, "category_hint": category_hint}
        try:
            resp = self._session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as exc:
            raise ClassificationServiceError(f"classification request failed: {exc}") from exc
        except ValueError as exc:
            raise ClassificationServiceError("classification response was not valid JSON") from exc

        result = RemoteClassification.from_dict(data)
        logger.debug("Remote classification %r -> %s (%.2f)", product_name, result.category, result.confidence)
        return result
