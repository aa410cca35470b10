"""Token-by-token generation loop.

The engine drives a `DecodeSession` one step at a time:

    window -> scores -> repetition penalty -> sample -> append -> stop check

On step 0 the whole prompt is submitted; afterwards only the token sampled in
the previous step, because the session keeps the KV cache between calls.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Sequence

import torch

from .adapters.base import BaseAdapter, DecodeSession
from .errors import (
    AnswerError,
    EmptyPrompt,
    GenerationCancelled,
    GenerationFailure,
    MissingStopToken,
)
from .sampling import SamplingPolicy, apply_repeat_penalty
from .types import GenerationConfig, GenerationResult, Timing

logger = logging.getLogger(__name__)


class GenerationEngine:
    """Runs one bounded decode loop per call.

    Thread-safety:
        An engine owns its sampler, whose random stream advances with every
        draw; use one engine per run. The adapter may be shared, since each
        run opens its own decode session.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        config: GenerationConfig | None = None,
        *,
        sampling: SamplingPolicy | None = None,
    ) -> None:
        self._adapter = adapter
        self._config = config or GenerationConfig()
        self._config.validate()
        self._sampling = sampling or SamplingPolicy(
            self._config.seed,
            temperature=self._config.temperature,
            top_p=self._config.top_p,
        )

    @property
    def config(self) -> GenerationConfig:
        return self._config

    def run(
        self,
        prompt: str,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> str:
        """Generate a completion for `prompt` and return the trimmed text."""
        return self.generate(prompt, cancel=cancel, deadline=deadline).text

    def generate(
        self,
        prompt: str,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> GenerationResult:
        """Generate a completion for `prompt`.

        Args:
            prompt: Fully assembled model prompt.
            cancel: Checked between decode steps; when set the run aborts.
            deadline: `time.monotonic()` value after which the run aborts.

        Raises:
            EmptyPrompt: The prompt encodes to zero tokens.
            MissingStopToken: The end-of-text token is not in the vocabulary.
            GenerationFailure: Tokenizer, model or sampler failed mid-run.
            GenerationCancelled: `cancel` was set or `deadline` passed.
        """
        cfg = self._config
        logger.debug("starting the inference loop: prompt=%r", prompt)

        try:
            tokens = list(self._adapter.encode(prompt))
        except Exception as exc:
            raise GenerationFailure("failed to encode the prompt", exc) from exc
        if not tokens:
            raise EmptyPrompt("Empty prompts are not supported.")
        prompt_tokens = len(tokens)

        stop_token_ids = self._resolve_stop_token_ids()

        started = time.monotonic()
        generated_tokens = 0
        finish_reason = "length"
        response_parts: list[str] = []

        try:
            session = self._adapter.open_session()
        except Exception as exc:
            raise GenerationFailure("failed to open a decode session", exc) from exc

        try:
            for index in range(cfg.max_new_tokens):
                _check_cancelled(cancel, deadline)
                try:
                    next_token = self._step(session, tokens, index)
                except AnswerError:
                    raise
                except Exception as exc:
                    raise GenerationFailure(f"decode step {index} failed", exc) from exc

                tokens.append(next_token)
                generated_tokens += 1
                if next_token in stop_token_ids:
                    finish_reason = "stop"
                    break

                try:
                    response_parts.append(self._adapter.decode([next_token]))
                except Exception as exc:
                    raise GenerationFailure(f"failed to decode token {next_token}", exc) from exc
        finally:
            session.close()

        elapsed = max(time.monotonic() - started, 1e-9)
        tok_per_s = generated_tokens / elapsed
        logger.debug(
            "inference loop finished: generated_tokens=%d speed=%.2f token/s",
            generated_tokens,
            tok_per_s,
        )

        return GenerationResult(
            text="".join(response_parts).strip(),
            prompt_tokens=prompt_tokens,
            generated_tokens=generated_tokens,
            finish_reason=finish_reason,
            timing=Timing(total_s=elapsed, tok_per_s=tok_per_s),
        )

    def _step(self, session: DecodeSession, tokens: Sequence[int], index: int) -> int:
        cfg = self._config

        context_size = len(tokens) if index == 0 else 1
        window = tokens[len(tokens) - context_size :]

        scores = session.forward(window)
        scores = scores.detach().to(device="cpu", dtype=torch.float32)

        if cfg.repeat_penalty != 1.0:
            start_at = max(len(tokens) - cfg.repeat_window, 0)
            scores = apply_repeat_penalty(scores, cfg.repeat_penalty, tokens[start_at:])

        return self._sampling.sample(scores)

    def _resolve_stop_token_ids(self) -> frozenset[int]:
        cfg = self._config
        try:
            eos_token_id = self._adapter.token_to_id(cfg.eos_token)
        except Exception as exc:
            raise GenerationFailure("vocabulary lookup failed", exc) from exc
        if eos_token_id is None:
            raise MissingStopToken(cfg.eos_token)

        stop_ids = {eos_token_id, *cfg.stop_token_ids}
        for s in cfg.stop_strings:
            token_id = self._single_token_id(s)
            if token_id is None:
                logger.warning("ignoring stop string %r: it is not a single token", s)
                continue
            stop_ids.add(token_id)
        return frozenset(stop_ids)

    def _single_token_id(self, text: str) -> int | None:
        if not text:
            return None
        try:
            token_id = self._adapter.token_to_id(text)
            if token_id is not None:
                return token_id
            ids = self._adapter.encode(text, add_special_tokens=False)
        except Exception as exc:
            raise GenerationFailure(f"failed to resolve stop string {text!r}", exc) from exc
        if len(ids) == 1:
            return int(ids[0])
        return None


def _check_cancelled(cancel: threading.Event | None, deadline: float | None) -> None:
    if cancel is not None and cancel.is_set():
        raise GenerationCancelled("generation cancelled")
    if deadline is not None and time.monotonic() >= deadline:
        raise GenerationCancelled("generation deadline exceeded")
