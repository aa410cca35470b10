"""Typed failures raised while answering a question.

None of these are retried inside the engine. "No relevant content" is not an
error: it is a regular answer (see `tera.engine.answer`).
"""

from __future__ import annotations


class AnswerError(Exception):
    """Base class for all answer/generation failures."""


class EmptyQuery(AnswerError, ValueError):
    """The query is empty or whitespace-only."""


class EmptyPrompt(AnswerError, ValueError):
    """The prompt encoded to zero tokens."""


class MissingStopToken(AnswerError, RuntimeError):
    """The end-of-text token is not in the vocabulary.

    This means the tokenizer does not belong to the loaded model.
    """

    def __init__(self, token: str) -> None:
        super().__init__(f"cannot find the end-of-text token {token!r} in the vocabulary")
        self.token = token


class GenerationFailure(AnswerError, RuntimeError):
    """The tokenizer, model or sampler failed during a run."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.cause = cause


class GenerationCancelled(AnswerError, RuntimeError):
    """The run was cancelled or hit its deadline between decode steps."""
