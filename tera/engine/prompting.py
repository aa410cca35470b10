"""Prompt assembly.

Builds a ChatML instruction from a question and the retrieved context. The
context is serialized as a compact JSON array so the model sees each chunk
together with its metadata, in the order the retriever ranked them.
"""

from __future__ import annotations

import datetime as _dt
import json
from typing import Any, Mapping, Sequence

from .errors import EmptyQuery
from .types import ContextSnippet

SYSTEM_PERSONA = (
    "As a friendly and helpful AI assistant named Tera. "
    "Your answer should be very concise and to the point. "
    "Do not repeat question or references."
)

_TEMPLATE = (
    "<|im_start|>system\n{persona} Today is {date}<|im_end|>\n"
    "<|im_start|>user\n"
    'question: "{question}"\n'
    'references: "{context}"\n'
    "<|im_end|>\n"
    "<|im_start|>assistant\n"
)


def format_long_date(now: _dt.date) -> str:
    """Render e.g. `Sunday, October 18, 2026` (day not zero-padded)."""
    return f"{now:%A}, {now:%B} {now.day}, {now.year}"


def serialize_context(snippets: Sequence[ContextSnippet | Mapping[str, Any]]) -> str:
    records: list[dict[str, Any]] = []
    for snippet in snippets:
        if not isinstance(snippet, ContextSnippet):
            snippet = ContextSnippet.from_dict(snippet)
        records.append({"content": snippet.content, "metadata": snippet.metadata})
    return json.dumps(records, ensure_ascii=False, separators=(",", ":"))


def assemble_prompt(
    query: str,
    snippets: Sequence[ContextSnippet | Mapping[str, Any]],
    now: _dt.date,
) -> str:
    """Build the model prompt for `query` grounded on `snippets`.

    Raises:
        EmptyQuery: If `query` is empty or whitespace-only.
    """
    if not query or not query.strip():
        raise EmptyQuery("query must not be empty")

    return _TEMPLATE.format(
        persona=SYSTEM_PERSONA,
        date=format_long_date(now),
        question=query,
        context=serialize_context(snippets),
    )
