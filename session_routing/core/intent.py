"""
Intent Detector for explicit "start a new session" language.
"""

import asyncio
import unicodedata
from typing import Iterator, Optional, Tuple

from ..models import IntentMatch, RouterConfig
from ..utils import get_logger
from .interfaces import IntentClassifier


# Keywords shorter than this many characters per allowed edit only match exactly
FUZZY_CHARS_PER_EDIT = 5


def normalize_text(text: str) -> str:
    """Unicode-normalize, case-fold and collapse whitespace."""
    normalized = unicodedata.normalize("NFKC", text or "").casefold()
    return " ".join(normalized.split())


def substring_edit_distance(pattern: str, text: str) -> int:
    """
    Minimum Levenshtein distance between `pattern` and any substring of `text`.

    Dynamic programming with a free starting position in `text` (the first row
    is all zeros) and a free end (minimum over the last row).
    """
    if not pattern:
        return 0
    if not text:
        return len(pattern)

    previous = [0] * (len(text) + 1)
    for i, p_char in enumerate(pattern, 1):
        current = [i] + [0] * len(text)
        for j, t_char in enumerate(text, 1):
            cost = 0 if p_char == t_char else 1
            current[j] = min(
                previous[j] + 1,         # skip a pattern character
                current[j - 1] + 1,      # skip a text character
                previous[j - 1] + cost,  # match or substitute
            )
        previous = current
    return min(previous)


class IntentDetector:
    """
    Three-tier matcher for explicit new-session intent.

    Tier 1 is a normalized substring match against every configured locale,
    tier 2 an approximate substring match that tolerates typos, and tier 3 an
    optional injected classifier for paraphrases. Tiers 1 and 2 never depend
    on anything external.
    """

    def __init__(self, classifier: Optional[IntentClassifier] = None):
        self.logger = get_logger(__name__)
        self.classifier = classifier

    def detect(self, message: str, config: RouterConfig) -> Optional[IntentMatch]:
        """
        Run the exact and fuzzy tiers.

        Args:
            message: The incoming user message
            config: Router configuration holding the keyword sets

        Returns:
            IntentMatch for the first matching keyword, or None
        """
        text = normalize_text(message)
        if not text:
            return None

        keywords = list(self._keywords(config))

        for locale, keyword, normalized in keywords:
            if normalized in text:
                return IntentMatch(keyword=keyword, locale=locale, tier="exact")

        best: Optional[IntentMatch] = None
        for locale, keyword, normalized in keywords:
            allowed = self.allowed_distance(normalized, config)
            if allowed == 0:
                continue
            distance = substring_edit_distance(normalized, text)
            if distance <= allowed and (best is None or distance < best.distance):
                best = IntentMatch(keyword=keyword, locale=locale, tier="fuzzy", distance=distance)

        return best

    async def detect_async(self, message: str, config: RouterConfig,
                           timeout: Optional[float] = None) -> Optional[IntentMatch]:
        """
        Run all three tiers. Classifier failures or timeouts skip tier 3.
        """
        match = self.detect(message, config)
        if match or self.classifier is None or not normalize_text(message):
            return match

        try:
            label = await asyncio.wait_for(self.classifier.classify(message), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.debug("Intent classifier timed out, skipping semantic tier")
            return None
        except Exception as e:
            self.logger.debug(f"Intent classifier unavailable, skipping semantic tier: {str(e)}")
            return None

        if label:
            return IntentMatch(keyword=str(label), locale="semantic", tier="semantic")
        return None

    @staticmethod
    def allowed_distance(normalized_keyword: str, config: RouterConfig) -> int:
        """Edits tolerated for a keyword; short keywords must match exactly."""
        return min(config.fuzzy_edit_distance_max, len(normalized_keyword) // FUZZY_CHARS_PER_EDIT)

    @staticmethod
    def _keywords(config: RouterConfig) -> Iterator[Tuple[str, str, str]]:
        for locale, keywords in config.intent_keywords.items():
            for keyword in keywords:
                normalized = normalize_text(keyword)
                if normalized:
                    yield locale, keyword, normalized
