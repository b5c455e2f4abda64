"""
Interfaces consumed by the routing engine and their reference implementations.

The engine only depends on the Protocol classes below. The concrete classes are
adapters the host application can use directly: OpenAI (chat + embeddings),
a local Ollama server, a character-count token estimator and an in-memory
session store.
"""

import asyncio
import dataclasses
import json
import math
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional, Any, List, Protocol, Tuple

import requests
import openai
from openai import AsyncOpenAI

from ..models import Conversation, Message, MessageRole, SessionState, TaskType
from ..models.config import LocalLLMConfig, OpenAIConfig
from ..utils import get_logger
from ..utils.error_handling import SessionGraphError, SignalUnavailableError, StoreError


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class TokenEstimator(Protocol):
    def estimate(self, text: str) -> int:
        ...


class SemanticScorer(Protocol):
    async def score(self, text: str, reference_summary: str) -> float:
        ...


class Summarizer(Protocol):
    async def summarize(self, transcript: str) -> str:
        ...


class IntentClassifier(Protocol):
    async def classify(self, message: str) -> Optional[str]:
        """Return a label for the detected new-session intent, or None."""
        ...


class ContradictionClassifier(Protocol):
    async def contradicts(self, first: str, second: str) -> bool:
        ...


class ChatClient(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


class SessionStore(Protocol):
    def create_session(self, parent_id: Optional[str] = None,
                       carry_over_message: Optional[str] = None,
                       idempotency_key: Optional[str] = None) -> str:
        ...

    def find_session(self, idempotency_key: str) -> Optional[str]:
        """Id of the session created under `idempotency_key`, if any."""
        ...

    def set_session_state(self, session_id: str, state: SessionState) -> None:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def update_summary(self, conversation_id: str, summary: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Token estimation
# ---------------------------------------------------------------------------

_CJK_PATTERN = re.compile(r'[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff]')


class CharacterTokenEstimator:
    """
    Character-count heuristic: about four Latin characters per token and
    0.75 tokens per CJK character.
    """

    def __init__(self, chars_per_token: float = 4.0, cjk_tokens_per_char: float = 0.75):
        self.chars_per_token = chars_per_token
        self.cjk_tokens_per_char = cjk_tokens_per_char

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        cjk_chars = len(_CJK_PATTERN.findall(text))
        other_chars = len(text) - cjk_chars
        tokens = other_chars / self.chars_per_token + cjk_chars * self.cjk_tokens_per_char
        return max(1, math.ceil(tokens))


# ---------------------------------------------------------------------------
# Chat clients
# ---------------------------------------------------------------------------

class OpenAIChatClient:
    """
    Chat completion client for OpenAI-compatible APIs.

    Failures are raised as SignalUnavailableError so callers can degrade.
    """

    def __init__(self, config: Optional[OpenAIConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or OpenAIConfig()
        self.logger = get_logger(__name__)

        if client is not None:
            self._client = client
        elif not self.config.api_key:
            self.logger.warning("OpenAI API key not provided")
            self._client = None
        else:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
            )

    @property
    def client(self) -> Optional[AsyncOpenAI]:
        return self._client

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        if not self._client:
            raise SignalUnavailableError("OpenAI API client not initialized", signal_name="openai")

        try:
            response = await self._client.chat.completions.create(
                model=self.config.chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.RateLimitError as e:
            self.logger.warning(f"OpenAI rate limit hit: {str(e)}")
            raise SignalUnavailableError(f"Rate limit exceeded: {str(e)}", signal_name="openai")
        except openai.APIError as e:
            self.logger.error(f"OpenAI API error: {str(e)}")
            raise SignalUnavailableError(f"OpenAI API error: {str(e)}", signal_name="openai")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise SignalUnavailableError("OpenAI returned an empty completion", signal_name="openai")
        return content.strip()


class OllamaChatClient:
    """
    Chat client for a local Ollama server.

    `requests` is blocking, so calls run in a worker thread.
    """

    def __init__(self, config: Optional[LocalLLMConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or LocalLLMConfig()
        self.logger = get_logger(__name__)
        self._session = session or requests.Session()

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        return await asyncio.to_thread(self._complete_sync, system_prompt, user_prompt)

    def _complete_sync(self, system_prompt: str, user_prompt: str) -> str:
        payload = {
            "model": self.config.model_path,
            "system": system_prompt,
            "prompt": user_prompt,
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "num_ctx": self.config.max_context_length
            }
        }

        try:
            response = self._session.post(
                f"{self.config.base_url}/api/generate",
                json=payload,
                timeout=self.config.timeout_seconds
            )
        except requests.exceptions.Timeout:
            raise SignalUnavailableError(
                f"Ollama request timeout after {self.config.timeout_seconds} seconds", signal_name="ollama"
            )
        except requests.exceptions.RequestException as e:
            raise SignalUnavailableError(f"Ollama request failed: {str(e)}", signal_name="ollama")

        if response.status_code != 200:
            self.logger.error(f"Ollama API error: {response.status_code} - {response.text}")
            raise SignalUnavailableError(f"Ollama API error: {response.status_code}", signal_name="ollama")

        content = response.json().get('response', '').strip()
        if not content:
            raise SignalUnavailableError("Ollama returned an empty response", signal_name="ollama")
        return content

    def is_available(self) -> bool:
        """Check whether the Ollama server answers."""
        try:
            response = self._session.get(f"{self.config.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"Ollama server not accessible: {str(e)}")
            return False


# ---------------------------------------------------------------------------
# Model-backed collaborators
# ---------------------------------------------------------------------------

SUMMARY_SYSTEM_PROMPT = """You summarize chat conversations so a new session can pick up where the old one stopped.

Write a compact summary with three sections:
Topics: what was discussed.
Decisions: what was decided or completed.
Open questions: what is still unresolved.

Use the conversation's language. Do not invent details."""


class LLMSummarizer:
    """Carry-over summarizer backed by any ChatClient."""

    def __init__(self, chat_client: ChatClient, max_transcript_chars: int = 24000):
        self.chat_client = chat_client
        self.max_transcript_chars = max_transcript_chars

    async def summarize(self, transcript: str) -> str:
        if len(transcript) > self.max_transcript_chars:
            transcript = transcript[-self.max_transcript_chars:]
        return await self.chat_client.complete(SUMMARY_SYSTEM_PROMPT, transcript)


class OpenAIEmbeddingScorer:
    """Semantic scorer using OpenAI embeddings and cosine similarity."""

    def __init__(self, config: Optional[OpenAIConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or OpenAIConfig()
        self.logger = get_logger(__name__)
        if client is not None:
            self._client = client
        elif self.config.api_key:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
            )
        else:
            self.logger.warning("OpenAI API key not provided, semantic scoring disabled")
            self._client = None

    async def score(self, text: str, reference_summary: str) -> float:
        if not self._client:
            raise SignalUnavailableError("OpenAI API client not initialized", signal_name="semantic")

        try:
            response = await self._client.embeddings.create(
                model=self.config.embedding_model,
                input=[text, reference_summary],
            )
        except openai.APIError as e:
            raise SignalUnavailableError(f"Embedding request failed: {str(e)}", signal_name="semantic")

        first, second = response.data[0].embedding, response.data[1].embedding
        return max(0.0, min(1.0, cosine_similarity(first, second)))


def cosine_similarity(first: List[float], second: List[float]) -> float:
    dot = sum(a * b for a, b in zip(first, second))
    norm = math.sqrt(sum(a * a for a in first)) * math.sqrt(sum(b * b for b in second))
    if norm == 0:
        return 0.0
    return dot / norm


INTENT_SYSTEM_PROMPT = """Decide whether the user's message asks to leave the current conversation and start a new one.

Answer with JSON only: {"new_session": true|false, "phrase": "<the words that express it or empty>"}"""


class LLMIntentClassifier:
    """Paraphrase-level new-session intent detection backed by a ChatClient."""

    def __init__(self, chat_client: ChatClient):
        self.chat_client = chat_client

    async def classify(self, message: str) -> Optional[str]:
        answer = parse_json_object(await self.chat_client.complete(INTENT_SYSTEM_PROMPT, message))
        if answer.get("new_session") is True:
            return str(answer.get("phrase") or "semantic intent")
        return None


CONTRADICTION_SYSTEM_PROMPT = """You compare two assistant statements from the same conversation.

Answer with JSON only: {"contradiction": true|false}"""


class LLMContradictionClassifier:
    """Checks two assistant messages for conflicting claims."""

    def __init__(self, chat_client: ChatClient):
        self.chat_client = chat_client

    async def contradicts(self, first: str, second: str) -> bool:
        prompt = f"Statement A:\n{first}\n\nStatement B:\n{second}"
        answer = parse_json_object(await self.chat_client.complete(CONTRADICTION_SYSTEM_PROMPT, prompt))
        return answer.get("contradiction") is True


_JSON_OBJECT_PATTERN = re.compile(r'\{.*\}', re.DOTALL)


def parse_json_object(content: str) -> Dict[str, Any]:
    """Extract the first JSON object from a model reply."""
    match = _JSON_OBJECT_PATTERN.search(content or "")
    if not match:
        raise SignalUnavailableError("Model reply contained no JSON object")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise SignalUnavailableError(f"Model reply was not valid JSON: {str(e)}")
    if not isinstance(parsed, dict):
        raise SignalUnavailableError("Model reply JSON was not an object")
    return parsed


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------

class InMemorySessionStore:
    """
    Thread-safe in-memory session store.

    Supports idempotency keys on create_session and refuses parent links
    that would make a session its own ancestor.
    """

    def __init__(self, default_model_max_tokens: int = 8192):
        self.default_model_max_tokens = default_model_max_tokens
        self.logger = get_logger(__name__)
        self._sessions: Dict[str, Conversation] = {}
        self._idempotency: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add_conversation(self, conversation: Conversation) -> None:
        with self._lock:
            if conversation.parent_session_id:
                self._check_acyclic(conversation.id, conversation.parent_session_id)
            self._sessions[conversation.id] = conversation

    def append_message(self, conversation_id: str, message: Message) -> Conversation:
        with self._lock:
            conversation = self._get(conversation_id)
            updated = dataclasses.replace(conversation, messages=conversation.messages + (message,))
            self._sessions[conversation_id] = updated
            return updated

    def create_session(self, parent_id: Optional[str] = None,
                       carry_over_message: Optional[str] = None,
                       idempotency_key: Optional[str] = None) -> str:
        with self._lock:
            if idempotency_key and idempotency_key in self._idempotency:
                existing = self._idempotency[idempotency_key]
                self.logger.info(f"Idempotent replay for {idempotency_key}, returning {existing}")
                return existing

            parent = self._get(parent_id) if parent_id else None
            session_id = uuid.uuid4().hex
            if parent_id:
                self._check_acyclic(session_id, parent_id)

            messages: Tuple[Message, ...] = ()
            if carry_over_message:
                messages = (Message(role=MessageRole.SYSTEM, content=carry_over_message,
                                    timestamp=datetime.now(timezone.utc)),)

            self._sessions[session_id] = Conversation(
                id=session_id,
                messages=messages,
                model_max_tokens=parent.model_max_tokens if parent else self.default_model_max_tokens,
                parent_session_id=parent_id,
                summary=carry_over_message or "",
                state=SessionState.ACTIVE,
                task_type=parent.task_type if parent else TaskType.GENERAL,
            )
            if idempotency_key:
                self._idempotency[idempotency_key] = session_id

            self.logger.info(f"Session created: {session_id} (parent: {parent_id})")
            return session_id

    def find_session(self, idempotency_key: str) -> Optional[str]:
        with self._lock:
            return self._idempotency.get(idempotency_key)

    def set_session_state(self, session_id: str, state: SessionState) -> None:
        with self._lock:
            conversation = self._get(session_id)
            self._sessions[session_id] = dataclasses.replace(conversation, state=state)

    def get_conversation(self, conversation_id: str) -> Conversation:
        with self._lock:
            return self._get(conversation_id)

    def update_summary(self, conversation_id: str, summary: str) -> None:
        with self._lock:
            conversation = self._get(conversation_id)
            self._sessions[conversation_id] = dataclasses.replace(conversation, summary=summary)

    def ancestors(self, session_id: str) -> List[str]:
        """Parent chain of a session, nearest first."""
        with self._lock:
            return self._ancestors(session_id)

    def children(self, session_id: str) -> List[str]:
        with self._lock:
            return [sid for sid, c in self._sessions.items() if c.parent_session_id == session_id]

    def _get(self, session_id: str) -> Conversation:
        conversation = self._sessions.get(session_id)
        if conversation is None:
            raise StoreError(f"Unknown session: {session_id}", session_id=session_id)
        return conversation

    def _ancestors(self, session_id: str) -> List[str]:
        chain: List[str] = []
        seen = {session_id}
        current = self._sessions.get(session_id)
        while current is not None and current.parent_session_id:
            parent_id = current.parent_session_id
            if parent_id in seen:
                raise SessionGraphError(f"Cycle in parent links at {parent_id}", session_id=session_id)
            seen.add(parent_id)
            chain.append(parent_id)
            current = self._sessions.get(parent_id)
        return chain

    def _check_acyclic(self, session_id: str, parent_id: str) -> None:
        if parent_id == session_id or session_id in self._ancestors(parent_id):
            raise SessionGraphError(
                f"Linking {session_id} under {parent_id} would create a cycle", session_id=session_id
            )
