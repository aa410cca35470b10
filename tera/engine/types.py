"""Engine value types.

These types are used internally by the engine and adapters.
They are independent of any HTTP/API layer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping

_MAX_SEED = 2**64 - 1


@dataclass(frozen=True)
class GenerationConfig:
    """Per-run decoding parameters.

    Notes:
    - `temperature=None` means greedy decoding.
    - `top_p=None` disables nucleus filtering.
    - `repeat_penalty=1.0` disables the repetition penalty.
    - The end-of-text token is always a stop token; `stop_token_ids` and
      `stop_strings` add more sentinels. Answers are single-line, so a newline
      stops generation unless `stop_strings` says otherwise.
    """

    seed: int = 398752958
    temperature: float | None = 0.3
    top_p: float | None = None
    repeat_penalty: float = 1.1
    repeat_window: int = 64
    max_new_tokens: int = 400
    eos_token: str = "<|endoftext|>"
    stop_token_ids: frozenset[int] = field(default_factory=frozenset)
    stop_strings: tuple[str, ...] = ("\n",)

    def validate(self) -> None:
        if isinstance(self.seed, bool) or not 0 <= self.seed <= _MAX_SEED:
            raise ValueError("'seed' must be an integer in [0, 2**64).")
        if self.temperature is not None and not (math.isfinite(self.temperature) and self.temperature > 0):
            raise ValueError("'temperature' must be a finite number > 0 (or null for greedy).")
        if self.top_p is not None and not (math.isfinite(self.top_p) and 0 < self.top_p <= 1):
            raise ValueError("'top_p' must be in (0, 1] (or null).")
        if not (math.isfinite(self.repeat_penalty) and self.repeat_penalty >= 1.0):
            raise ValueError("'repeat_penalty' must be a finite number >= 1.0.")
        if self.repeat_window < 0:
            raise ValueError("'repeat_window' must be >= 0.")
        if self.max_new_tokens < 0:
            raise ValueError("'max_new_tokens' must be >= 0.")
        if not self.eos_token:
            raise ValueError("'eos_token' must be a non-empty string.")

    def merged(self, override: Any | None) -> "GenerationConfig":
        """Merge a request-level override (typically the request's `generation` object)."""
        if override is None:
            return self
        if isinstance(override, GenerationConfig):
            override.validate()
            return override
        if not isinstance(override, Mapping):
            raise ValueError("'generation' must be an object.")

        data: dict[str, Any] = dict(override)
        if "repeat_window" not in data and "repeat_last_n" in data:
            data["repeat_window"] = data.pop("repeat_last_n")

        unknown = set(data) - _OVERRIDABLE
        if unknown:
            raise ValueError(f"Unknown generation option(s): {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = {}
        if "seed" in data:
            changes["seed"] = _coerce_int(data["seed"], "seed", min_value=0)
        if "temperature" in data:
            changes["temperature"] = _coerce_optional_float(data["temperature"], "temperature")
        if "top_p" in data:
            changes["top_p"] = _coerce_optional_float(data["top_p"], "top_p")
        if "repeat_penalty" in data:
            value = _coerce_optional_float(data["repeat_penalty"], "repeat_penalty")
            changes["repeat_penalty"] = 1.0 if value is None else value
        if "repeat_window" in data:
            changes["repeat_window"] = _coerce_int(data["repeat_window"], "repeat_window", min_value=0)
        if "max_new_tokens" in data:
            changes["max_new_tokens"] = _coerce_int(data["max_new_tokens"], "max_new_tokens", min_value=0)
        if "stop_strings" in data:
            raw = data["stop_strings"]
            if not isinstance(raw, (list, tuple)) or not all(isinstance(s, str) for s in raw):
                raise ValueError("'generation.stop_strings' must be a list of strings.")
            changes["stop_strings"] = tuple(raw)

        merged = replace(self, **changes)
        merged.validate()
        return merged


_OVERRIDABLE = frozenset(
    {"seed", "temperature", "top_p", "repeat_penalty", "repeat_window", "max_new_tokens", "stop_strings"}
)


def _coerce_int(value: Any, name: str, *, min_value: int = 1) -> int:
    # JSON numbers only; 400.0 is accepted, 1.5 and "7" are not.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'generation.{name}' must be an integer.")
    out = value
    if out < min_value:
        raise ValueError(f"'generation.{name}' must be >= {min_value}.")
    return out


def _coerce_optional_float(value: Any, name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'generation.{name}' must be a number.")
    return float(value)


@dataclass(frozen=True)
class ContextSnippet:
    """A retrieved chunk of saved content.

    `metadata` is opaque to the engine but must be JSON-serializable.
    """

    content: str
    metadata: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContextSnippet":
        if not isinstance(data, Mapping):
            raise ValueError("Each context item must be an object.")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValueError("'content' is required and must be a string.")
        return cls(content=content, metadata=data.get("metadata"))


@dataclass(frozen=True)
class Timing:
    total_s: float | None = None
    tok_per_s: float | None = None


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one decode run."""

    text: str
    prompt_tokens: int = 0
    generated_tokens: int = 0
    finish_reason: Literal["stop", "length", "no_context"] = "stop"
    timing: Timing = field(default_factory=Timing)
