"""Async answer service (public entry point).

`AnswerService.answer()` is awaited from an event loop, but the decode loop
is CPU-bound and blocking, so it runs on a dedicated thread pool. The event
loop only waits for the result.
"""

from __future__ import annotations

import asyncio
import datetime as _dt
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Sequence

from .generation import GenerationEngine
from .model_handle import SharedModelHandle
from .prompting import assemble_prompt
from .registry import DEFAULT_MODEL, load_handle, resolve_model
from .types import ContextSnippet, GenerationConfig, GenerationResult

logger = logging.getLogger(__name__)

NO_RELEVANT_CONTENT_MESSAGE = (
    "None of your saved content is relevant to this question. "
    "I can only answer based on your saved content."
)


@dataclass(frozen=True)
class AnswerConfig:
    """Service-wide defaults and limits."""

    generation: GenerationConfig = field(default_factory=GenerationConfig)
    max_workers: int = 2
    timeout_s: float | None = None

    def validate(self) -> None:
        self.generation.validate()
        if self.max_workers <= 0:
            raise ValueError("'max_workers' must be > 0.")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValueError("'timeout_s' must be > 0 (or null).")


class AnswerService:
    """Answers questions strictly from caller-supplied context.

    Every call gets a fresh `GenerationEngine` (own sampler, own decode
    session); only the model weights are shared, through `handle`.
    """

    def __init__(
        self,
        handle: SharedModelHandle,
        *,
        config: AnswerConfig | None = None,
        clock: Callable[[], _dt.date] | None = None,
    ) -> None:
        self._handle = handle
        self._config = config or AnswerConfig()
        self._config.validate()
        self._clock = clock or _dt.date.today
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="tera-gen",
        )
        self._active: set[threading.Event] = set()
        self._active_lock = threading.Lock()

    @classmethod
    def for_model(
        cls,
        name: str = DEFAULT_MODEL,
        *,
        config: AnswerConfig | None = None,
        clock: Callable[[], _dt.date] | None = None,
        **load_kwargs: Any,
    ) -> "AnswerService":
        """Build a service for a registered model (or path / hub id).

        The model's end-of-text token and stop strings replace those in
        `config.generation`. Weights load lazily on the first answer.
        """
        spec = resolve_model(name)
        config = config or AnswerConfig()
        config = replace(config, generation=spec.generation_config(config.generation))
        handle = SharedModelHandle(lambda: load_handle(spec.name, **load_kwargs))
        return cls(handle, config=config, clock=clock)

    @property
    def handle(self) -> SharedModelHandle:
        return self._handle

    @property
    def config(self) -> AnswerConfig:
        return self._config

    async def answer(
        self,
        query: str,
        snippets: Sequence[ContextSnippet | Mapping[str, Any]],
        *,
        overrides: Mapping[str, Any] | None = None,
    ) -> str:
        result = await self.answer_detailed(query, snippets, overrides=overrides)
        return result.text

    async def answer_detailed(
        self,
        query: str,
        snippets: Sequence[ContextSnippet | Mapping[str, Any]],
        *,
        overrides: Mapping[str, Any] | None = None,
    ) -> GenerationResult:
        """Answer `query` from `snippets`, returning text plus usage/timing.

        An empty `snippets` list is a definitive answer, not a failure: the
        fixed `NO_RELEVANT_CONTENT_MESSAGE` is returned without touching the
        model or tokenizer.

        Raises:
            EmptyQuery, EmptyPrompt, MissingStopToken, GenerationFailure,
            GenerationCancelled: see `tera.engine.errors`.
            ValueError: Invalid `overrides` or context items.
        """
        if not snippets:
            logger.info("no context supplied; returning the fixed no-content answer")
            return GenerationResult(text=NO_RELEVANT_CONTENT_MESSAGE, finish_reason="no_context")

        context = [s if isinstance(s, ContextSnippet) else ContextSnippet.from_dict(s) for s in snippets]
        generation = self._config.generation.merged(overrides)

        prompt = assemble_prompt(query, context, self._clock())
        logger.debug("synthesizing answer with context: snippets=%d", len(context))

        deadline = None
        if self._config.timeout_s is not None:
            deadline = time.monotonic() + self._config.timeout_s
        cancel = threading.Event()

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, self._generate, prompt, generation, cancel, deadline)
        try:
            result = await future
        except asyncio.CancelledError:
            # The worker stops at the next step boundary.
            cancel.set()
            raise

        logger.info(
            "answered: prompt_tokens=%d generated_tokens=%d finish_reason=%s",
            result.prompt_tokens,
            result.generated_tokens,
            result.finish_reason,
        )
        return result

    def _generate(
        self,
        prompt: str,
        generation: GenerationConfig,
        cancel: threading.Event,
        deadline: float | None,
    ) -> GenerationResult:
        with self._active_lock:
            self._active.add(cancel)
        try:
            adapter = self._handle.get()
            engine = GenerationEngine(adapter, generation)
            return engine.generate(prompt, cancel=cancel, deadline=deadline)
        finally:
            with self._active_lock:
                self._active.discard(cancel)

    def shutdown(self) -> None:
        """Cancel queued and running answers, wait for workers, then release the model."""
        with self._active_lock:
            for cancel in self._active:
                cancel.set()
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._handle.unload()
