"""
Demo script showing basic usage of the Session Routing Engine.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from .models import Conversation, Message, MessageRole, PromptChoice, RouteDecisionType
from .utils import setup_logging, get_logger, ConfigManager, DecisionLogger
from .core import (
    DecisionAggregator, InMemorySessionStore, LLMSummarizer, OpenAIChatClient,
    OpenAIEmbeddingScorer, SemanticRelevanceAnalyzer, SessionRouter,
)


class KeywordOverlapScorer:
    """Offline stand-in for an embedding scorer: Jaccard overlap of words."""

    async def score(self, text: str, reference_summary: str) -> float:
        first = set(text.lower().split())
        second = set(reference_summary.lower().split())
        if not first or not second:
            return 0.0
        return len(first & second) / len(first | second)


def build_router(config_manager: ConfigManager) -> SessionRouter:
    config = config_manager.get_config()
    decision_logger = DecisionLogger.from_config(config.logging_config)

    if config.openai_config.api_key:
        scorer = OpenAIEmbeddingScorer(config.openai_config)
        summarizer = LLMSummarizer(OpenAIChatClient(config.openai_config))
    else:
        scorer = KeywordOverlapScorer()
        summarizer = None

    aggregator = DecisionAggregator(
        semantic_analyzer=SemanticRelevanceAnalyzer(scorer),
        summarizer=summarizer,
        decision_logger=decision_logger,
    )
    return SessionRouter(
        store=InMemorySessionStore(config.router_config.default_model_max_tokens),
        aggregator=aggregator,
        decision_logger=decision_logger,
        config=config_manager.router_config_for("demo_user"),
    )


async def run_demo(router: SessionRouter) -> None:
    logger = get_logger(__name__)
    now = datetime.now(timezone.utc)

    conversation = Conversation(
        id="demo",
        messages=(
            Message(MessageRole.USER, "How do I read a csv file with pandas?", now - timedelta(minutes=10)),
            Message(MessageRole.ASSISTANT, "Use pandas.read_csv('file.csv') and inspect the frame with head().",
                    now - timedelta(minutes=9)),
        ),
        model_max_tokens=8192,
    )
    router.store.add_conversation(conversation)

    messages = [
        "Can pandas read a csv file with a different separator?",
        "What's a good recipe for banana bread?",
        "新对话：帮我写一首诗",
    ]

    session_id = conversation.id
    for i, message in enumerate(messages, 1):
        logger.info(f"Routing message {i}: {message[:50]}...")
        result = await router.route(message, session_id)

        if result.decision is RouteDecisionType.PROMPT_USER:
            # The demo user always agrees to start over
            result = await router.resolve_prompt(result, session_id, PromptChoice.NEW_SESSION)

        print(f"\nMessage {i}: {message}")
        print(f"Decision: {result.decision.value} (confidence: {result.confidence:.2f})")
        print(f"Reason: {result.reason}")
        print(f"Session: {result.session_id}")
        print("-" * 50)
        session_id = result.session_id

    await router.wait_for_background_tasks()
    print(router.get_statistics())


def main():
    """Demonstrate basic system functionality."""
    config_manager = ConfigManager()
    config = config_manager.load_config()

    setup_logging(config.logging_config, debug_mode=config.debug_mode)
    logger = get_logger(__name__)

    logger.info("Session Routing Engine Demo Starting")
    asyncio.run(run_demo(build_router(config_manager)))
    logger.info("Demo completed successfully")


if __name__ == "__main__":
    main()
