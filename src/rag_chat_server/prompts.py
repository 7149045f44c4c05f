"""
System prompt assembly.

Prompt templates are treated as opaque strings; the only structure imposed
here is how retrieved context is appended.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from .retrieval.models import SearchResult

DEFAULT_PROMPT = (
    "You are a friendly and knowledgeable assistant. Answer using the context "
    "below when it is relevant, mention the source URLs so people can learn "
    "more, and say so politely when the context does not contain the answer."
)

SYSTEM_PROMPTS: Dict[str, str] = {
    "default": DEFAULT_PROMPT,
    "customerService": (
        "You are a helpful customer service representative. Be professional, "
        "friendly and patient, and keep responses concise."
    ),
    "technical": (
        "You are a technical support specialist. Provide clear, step-by-step "
        "solutions and explain complex concepts plainly."
    ),
}


def format_context(results: Sequence[SearchResult]) -> str:
    return "\n\n".join(f"Content: {r.content}\nSource: {r.url}" for r in results)


def build_chat_prompt(context: str, prompt_type: Optional[str] = None) -> str:
    template = SYSTEM_PROMPTS.get(prompt_type or "default", DEFAULT_PROMPT)
    return f"{template}\n\nContext:\n{context}"
