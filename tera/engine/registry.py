"""Model and adapter registry.

Maps short model names to hub repositories, and model families to their
adapter classes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Type

from .adapters.base import BaseAdapter
from .adapters.causal_lm import CausalLMAdapter
from .types import GenerationConfig

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "phi-2"


@dataclass(frozen=True)
class ModelSpec:
    """A named model: where to fetch it and how to stop it."""

    name: str
    repo_id: str
    family: str = "causal-lm"
    eos_token: str = "<|endoftext|>"
    stop_strings: tuple[str, ...] = ("\n",)
    gguf_file: str | None = None

    def generation_config(self, base: GenerationConfig | None = None) -> GenerationConfig:
        """`base` (default: `GenerationConfig()`) with this model's stop settings."""
        return replace(base or GenerationConfig(), eos_token=self.eos_token, stop_strings=self.stop_strings)


# Registry mapping model family names to adapter classes
_ADAPTER_REGISTRY: dict[str, Type[BaseAdapter]] = {
    "causal-lm": CausalLMAdapter,
}

_MODEL_REGISTRY: dict[str, ModelSpec] = {
    "phi-2": ModelSpec(
        name="phi-2",
        repo_id="cognitivecomputations/dolphin-2_6-phi-2",
    ),
    "mixtral-8x7b": ModelSpec(
        name="mixtral-8x7b",
        repo_id="cognitivecomputations/dolphin-2.6-mixtral-8x7b",
        eos_token="</s>",
    ),
}


def get_adapter(model_family: str) -> BaseAdapter:
    """
    Get an adapter instance for the given model family.

    Args:
        model_family: Name of the model family (e.g., "causal-lm").

    Returns:
        An adapter instance for the model family.

    Raises:
        ValueError: If the model family is not registered.
    """
    if model_family not in _ADAPTER_REGISTRY:
        available = ", ".join(_ADAPTER_REGISTRY.keys())
        raise ValueError(
            f"Unknown model family: {model_family!r}. Available: {available}"
        )
    return _ADAPTER_REGISTRY[model_family]()


def register_adapter(model_family: str, adapter_cls: Type[BaseAdapter]) -> None:
    """
    Register a new adapter for a model family.

    Args:
        model_family: Name of the model family.
        adapter_cls: Adapter class (must inherit from BaseAdapter).
    """
    _ADAPTER_REGISTRY[model_family] = adapter_cls


def register_model(spec: ModelSpec) -> None:
    _MODEL_REGISTRY[spec.name] = spec


def list_models() -> list[ModelSpec]:
    """Return the registered model specs."""
    return list(_MODEL_REGISTRY.values())


def resolve_model(name: str) -> ModelSpec:
    """Resolve a short name; anything else is treated as a local path or hub id."""
    spec = _MODEL_REGISTRY.get(name)
    if spec is not None:
        return spec
    return ModelSpec(name=name, repo_id=name)


def load_handle(name: str = DEFAULT_MODEL, **load_kwargs: Any) -> BaseAdapter:
    """Resolve `name`, build its adapter and load weights + tokenizer."""
    spec = resolve_model(name)
    adapter = get_adapter(spec.family)
    if spec.gguf_file is not None:
        load_kwargs.setdefault("gguf_file", spec.gguf_file)
    logger.info("loading model %s from %s", spec.name, spec.repo_id)
    adapter.load(spec.repo_id, **load_kwargs)
    return adapter
