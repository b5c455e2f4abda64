"""
Conversation Health Assessor: error loops, frustration, contradictions, dead ends.
"""

import asyncio
import re
from typing import List, Optional, Sequence

from ..models import HealthReport, Message, MessageRole, RouterConfig
from ..utils import get_logger
from .intent import normalize_text
from .interfaces import ContradictionClassifier


_ERROR_LINE_PATTERNS = [
    re.compile(r'\b\w*(?:error|exception)\b\s*[:(].*', re.IGNORECASE),
    re.compile(r'\btraceback\b.*', re.IGNORECASE),
    re.compile(r'\b(?:failed|failure)\b.*', re.IGNORECASE),
    re.compile(r'(?:错误|报错|异常|失败).*'),
]

# Volatile fragments replaced before comparing error lines
_NORMALIZATIONS = [
    (re.compile(r'0x[0-9a-f]+', re.IGNORECASE), '<addr>'),
    (re.compile(r'"[^"]*"|\'[^\']*\''), '<str>'),
    (re.compile(r'(?:[a-z]:)?(?:[\\/][\w.\-]+)+', re.IGNORECASE), '<path>'),
    (re.compile(r'\d+'), '<n>'),
    (re.compile(r'\s+'), ' '),
]

_INSTRUCTION_PATTERNS = [
    re.compile(r'\b(?:try|run|use|install|check|add|replace|change|update|click|open|set)\b', re.IGNORECASE),
    re.compile(r'\b(?:you can|you could|you should|next step|let me know|would you like|option)\b', re.IGNORECASE),
    re.compile(r'试试|可以|下一步|步骤|运行|请|选择'),
]

_OPTION_LINE_PATTERN = re.compile(r'^\s*(?:[-*•]|\d+[.)])\s+\S', re.MULTILINE)


def error_signature(content: str) -> str:
    """
    Structural fingerprint of the first error line in a message.

    Numbers, addresses, quoted values and paths are masked so the same error
    reported with different details yields the same signature. Returns an
    empty string when the message carries no error.
    """
    for pattern in _ERROR_LINE_PATTERNS:
        match = pattern.search(content or "")
        if match:
            line = match.group(0).splitlines()[0].strip().lower()
            for regex, replacement in _NORMALIZATIONS:
                line = regex.sub(replacement, line)
            return line.strip()[:200]
    return ""


def _contains_marker(text: str, marker: str) -> bool:
    marker = normalize_text(marker)
    if not marker:
        return False
    if marker.isascii():
        return re.search(r'(?<!\w)' + re.escape(marker) + r'(?!\w)', text) is not None
    return marker in text


class ConversationHealthAssessor:
    """
    Scans the recent transcript for signs that the conversation is stuck.

    The verdict is only ever a tie-break for the aggregator. The contradiction
    check needs an injected classifier and is a no-op without one.
    """

    def __init__(self, contradiction_classifier: Optional[ContradictionClassifier] = None):
        self.contradiction_classifier = contradiction_classifier
        self.logger = get_logger(__name__)

    async def assess(self, recent_messages: Sequence[Message], config: RouterConfig,
                     pending_message: str = "") -> HealthReport:
        messages = list(recent_messages)
        loop, signature = self.detect_error_loop(messages, config.health_error_repeat_threshold)

        return HealthReport(
            error_loop=loop,
            frustration=self.detect_frustration(messages, config, pending_message),
            contradiction=await self.detect_contradiction(messages, config.contradiction_window),
            dead_end=self.detect_dead_end(messages),
            dead_end_counts=config.dead_end_counts_as_unhealthy,
            error_signature=signature,
        )

    @staticmethod
    def detect_error_loop(messages: Sequence[Message], threshold: int):
        """Return (loop_detected, signature) for the trailing run of identical AI errors."""
        signatures = [
            error_signature(m.content) for m in messages if m.role is MessageRole.ASSISTANT
        ]
        if not signatures or not signatures[-1]:
            return False, ""

        last = signatures[-1]
        run = 0
        for signature in reversed(signatures):
            if signature != last:
                break
            run += 1
        return run >= threshold, last

    @staticmethod
    def detect_frustration(messages: Sequence[Message], config: RouterConfig,
                           pending_message: str = "") -> bool:
        if pending_message:
            candidate = pending_message
            previous = messages[-1] if messages else None
        else:
            index = next(
                (i for i in range(len(messages) - 1, -1, -1) if messages[i].role is MessageRole.USER),
                None
            )
            if index is None:
                return False
            candidate = messages[index].content
            previous = messages[index - 1] if index > 0 else None

        if previous is None or previous.role is not MessageRole.ASSISTANT:
            return False

        text = normalize_text(candidate)
        if not text or len(text) >= config.frustration_max_length:
            return False

        return any(
            _contains_marker(text, marker)
            for markers in config.frustration_markers.values()
            for marker in markers
        )

    async def detect_contradiction(self, messages: Sequence[Message], window: int) -> bool:
        if self.contradiction_classifier is None:
            return False

        recent_ai = [m.content for m in messages[-window:] if m.role is MessageRole.ASSISTANT]
        if len(recent_ai) < 2:
            return False

        latest = recent_ai[-1]
        try:
            verdicts = await asyncio.gather(*(
                self.contradiction_classifier.contradicts(earlier, latest)
                for earlier in recent_ai[:-1]
            ))
        except Exception as e:
            self.logger.warning(f"Contradiction classifier unavailable: {str(e)}")
            return False
        return any(verdicts)

    @staticmethod
    def detect_dead_end(messages: Sequence[Message]) -> bool:
        latest: Optional[Message] = next(
            (m for m in reversed(messages) if m.role is MessageRole.ASSISTANT), None
        )
        if latest is None or not latest.content.strip():
            return False
        content = latest.content
        if "?" in content or "？" in content:
            return False
        if _OPTION_LINE_PATTERN.search(content):
            return False
        return not any(pattern.search(content) for pattern in _INSTRUCTION_PATTERNS)


def recent_window(messages: Sequence[Message], size: int) -> List[Message]:
    return list(messages[-size:]) if size > 0 else []
