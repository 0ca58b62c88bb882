"""Labeled seed queries loaded into a fresh router."""

from __future__ import annotations

from rag_router.router.classifier import TrainingExample
from rag_router.types import Intent

SEED_CONFIDENCE = 0.9

_SEED_QUERIES: dict[Intent, tuple[str, ...]] = {
    Intent.ASK: (
        "What is machine learning?",
        "How does photosynthesis work?",
        "Explain quantum computing",
        "Who is Daniel Ek?",
        "Who is Steve Jobs?",
        "Who founded Apple?",
        "Who is Elon Musk?",
        "Who is the CEO of Microsoft?",
        "Who created Facebook?",
    ),
    Intent.WEB_SEARCH: (
        "What's the latest news about Tesla?",
        "Current stock prices for Apple",
        "What is the current stock price of Spotify?",
        "How much is Tesla stock trading at?",
        "What's the current price of Microsoft stock?",
        "Today's weather in New York",
        "Breaking news about AI",
        "Did Daniel Ek step down as CEO?",
        "Did Steve Jobs leave Apple?",
        "Is Elon Musk still CEO of Tesla?",
        "Did Bill Gates retire from Microsoft?",
        "Has Mark Zuckerberg stepped down from Facebook?",
    ),
    Intent.RAG_QUERY: (
        "What does my research document say about climate change?",
        "According to my notes, what are the key findings?",
        "Summarize the content in this file",
        "What information is in my uploaded document?",
    ),
    Intent.EDIT_REQUEST: (
        "Rewrite this paragraph to be more concise",
        "Improve the grammar in this text",
        "Make this more professional",
        "Fix the spelling errors",
        "Polish this content",
    ),
    Intent.EDITOR_WRITE: (
        "Write an essay about renewable energy",
        "Create a business proposal",
        "Draft a memo about the meeting",
        "Generate a report on market trends",
        "Compose a letter to the editor",
    ),
}


def seed_examples() -> list[TrainingExample]:
    return [
        TrainingExample(query=query, intent=intent, confidence=SEED_CONFIDENCE)
        for intent, queries in _SEED_QUERIES.items()
        for query in queries
    ]
