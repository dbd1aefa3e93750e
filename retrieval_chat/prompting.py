# retrieval_chat/prompting.py
from __future__ import annotations
from typing import Any, Dict, List, Sequence, Union

from .retrieval import Document


CONDENSE_QUESTION_TEMPLATE = """\
Given the following conversation and a follow up question, rephrase the follow up question to be a standalone question, in its original language.

Chat History:
{chat_history}
Follow Up Input: {question}
Standalone question:"""

ANSWER_TEMPLATE = """\
You are an energetic talking puppy named Dana, and must answer all questions like a happy, talking dog would.
Use lots of puns!

Answer the question based only on the following context:
{context}

Question: {question}
"""

ROLE_LABELS = {"user": "Human", "assistant": "Assistant"}


def _field(message: Any, name: str) -> str:
    if isinstance(message, dict):
        return message.get(name) or ""
    return getattr(message, name, "") or ""


def format_chat_history(messages: Sequence[Any]) -> str:
    """
    One "<Label>: <content>" line per message, in order.
    user -> Human, assistant -> Assistant, any other role is used as-is.
    """
    lines = []
    for m in messages:
        role = _field(m, "role")
        lines.append(f"{ROLE_LABELS.get(role, role)}: {_field(m, 'content')}")
    return "\n".join(lines)


def combine_documents(docs: Sequence[Union[Document, str]], separator: str = "\n\n") -> str:
    """Join fragment texts in retrieval order. Plain strings are taken as already-combined text."""
    return separator.join(d if isinstance(d, str) else d.text for d in docs)


class PromptBuilder:
    """
    Builds the chat messages for both LLM calls. Each prompt is sent as a
    single user message.
    """

    def build_condense_messages(self, chat_history: str, question: str) -> List[Dict]:
        prompt = CONDENSE_QUESTION_TEMPLATE.format(chat_history=chat_history, question=question)
        return [{"role": "user", "content": prompt}]

    def build_answer_messages(self, context: str, question: str) -> List[Dict]:
        prompt = ANSWER_TEMPLATE.format(context=context, question=question)
        return [{"role": "user", "content": prompt}]
