"""Fingerprint-based locator healing.

When every configured locator of a target fails, the page is scanned for the
element that best matches the step's stored fingerprint, and a replacement
locator is proposed with a confidence score. Suggestions are advisory: they
are recorded on the step result and never used to re-run the step.
"""

from __future__ import annotations

import logging
import re

from wutcli.core.session import BrowserSession, ElementDescriptor, SessionError
from wutcli.models.result import HealingSuggestion
from wutcli.models.script import Fingerprint, Locator

logger = logging.getLogger("wut.healing")

TAG_WEIGHT = 0.3
TEXT_WEIGHT = 0.4
ATTRS_WEIGHT = 0.3

# Token overlap or substring coverage below this ratio scores zero for text
TEXT_OVERLAP_MIN = 0.6

_WS_RE = re.compile(r"\s+")
_CSS_IDENT_RE = re.compile(r"^[A-Za-z_][\w-]*$")


def _normalize(text: str) -> str:
    return _WS_RE.sub(" ", text).strip().lower()


def text_similarity(expected: str, actual: str) -> float:
    """Score visible text agreement in [0, 1].

    Exact match (after whitespace/case normalization) scores 1.0. Otherwise
    substring containment covering at least 0.6 of the longer text, or token
    overlap of at least 0.6, scores the better of the two ratios. Anything
    weaker scores 0.
    """
    a, b = _normalize(expected), _normalize(actual)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    tokens_a, tokens_b = set(a.split(" ")), set(b.split(" "))
    overlap = len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))

    if a in b or b in a:
        shorter, longer = sorted((a, b), key=len)
        coverage = len(shorter) / len(longer)
        if coverage >= TEXT_OVERLAP_MIN:
            return max(overlap, coverage)
    if overlap >= TEXT_OVERLAP_MIN:
        return overlap
    return 0.0


def score_candidate(fingerprint: Fingerprint, candidate: ElementDescriptor) -> float:
    """Weighted agreement between a fingerprint and a live element.

    Only fingerprint components that are present take part, and the score is
    normalized by their total weight.
    """
    total_weight = 0.0
    score = 0.0

    if fingerprint.tag:
        total_weight += TAG_WEIGHT
        if fingerprint.tag.lower() == candidate.tag.lower():
            score += TAG_WEIGHT

    if fingerprint.text.strip():
        total_weight += TEXT_WEIGHT
        score += TEXT_WEIGHT * text_similarity(fingerprint.text, candidate.text)

    if fingerprint.attrs:
        total_weight += ATTRS_WEIGHT
        matched = sum(
            1 for key, value in fingerprint.attrs.items()
            if candidate.attrs.get(key) == value
        )
        score += ATTRS_WEIGHT * matched / len(fingerprint.attrs)

    if total_weight == 0:
        return 0.0
    return score / total_weight


def _css_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def locator_for(candidate: ElementDescriptor) -> Locator:
    """Pick the most stable locator that addresses a candidate element.

    Preference: id, name, data-testid, visible text, then tag + class.
    """
    attrs = candidate.attrs
    if attrs.get("id"):
        return Locator("id", attrs["id"])
    if attrs.get("name"):
        return Locator("name", attrs["name"])
    if attrs.get("data-testid"):
        return Locator("css", f"[data-testid={_css_string(attrs['data-testid'])}]")
    text = _WS_RE.sub(" ", candidate.text).strip()
    if text and len(text) <= 80:
        return Locator("text", text)

    selector = candidate.tag.lower() or "*"
    classes = [c for c in attrs.get("class", "").split() if _CSS_IDENT_RE.match(c)]
    if classes:
        selector += "".join(f".{c}" for c in classes)
    return Locator("css", selector)


class HealingEngine:
    """Propose replacement locators from stored fingerprints."""

    def __init__(self, min_confidence: float = 0.5):
        """Initialize engine.

        Args:
            min_confidence: Suggestions scoring below this are not surfaced
        """
        self._min_confidence = min_confidence

    @property
    def min_confidence(self) -> float:
        return self._min_confidence

    def suggest(
        self, fingerprint: Fingerprint | None, session: BrowserSession
    ) -> HealingSuggestion | None:
        """Scan the page for the best fingerprint match.

        Args:
            fingerprint: Stored description of the element
            session: Session whose current page is scanned

        Returns:
            HealingSuggestion at or above threshold, or None
        """
        if fingerprint is None or fingerprint.is_empty():
            return None

        try:
            candidates = session.describe_elements()
        except SessionError as e:
            logger.warning("Healing scan failed: %s", e)
            return None

        best: ElementDescriptor | None = None
        best_score = 0.0
        for candidate in candidates:
            score = score_candidate(fingerprint, candidate)
            # Strict comparison keeps the first document-order candidate on ties
            if score > best_score:
                best, best_score = candidate, score

        if best is None or best_score < self._min_confidence:
            logger.debug(
                "No healing candidate above %.2f (best %.2f of %d)",
                self._min_confidence, best_score, len(candidates),
            )
            return None

        suggestion = HealingSuggestion(locator=locator_for(best), confidence=best_score)
        logger.info(
            "Healing suggestion %s (confidence %.2f)", suggestion.locator, suggestion.confidence
        )
        return suggestion
