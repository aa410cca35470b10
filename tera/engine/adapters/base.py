"""Base adapter interface for model families.

An adapter is the engine's model handle: it owns the loaded weights and the
tokenizer, and hands out per-run decode sessions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    import torch


class DecodeSession(ABC):
    """Incremental decode state for exactly one generation run.

    Contract:
        The session keeps the model's cached state (KV cache, position)
        between calls. The first `forward()` receives the whole prompt; every
        later call receives only the token appended since the previous call.
        Calls must be made sequentially from one thread. Sessions are never
        shared between runs; open a new one per run with
        `BaseAdapter.open_session()`.
    """

    @abstractmethod
    def forward(self, window: Sequence[int]) -> torch.Tensor:
        """
        Advance the model over `window` and score the next token.

        Args:
            window: Token ids not yet seen by this session.

        Returns:
            1-D tensor of scores over the vocabulary for the position after
            the last token of `window`.
        """
        pass

    def close(self) -> None:
        """
        Release the session's cached state.

        Default implementation does nothing; override if cleanup is needed.
        """
        pass


class BaseAdapter(ABC):
    """
    Abstract base class for model-family adapters.

    Each supported model family implements this interface so the engine
    can run inference without knowing model-specific details.

    Weights are read-only after `load()`. Concurrent runs are safe as long as
    each uses its own `DecodeSession`.
    """

    @abstractmethod
    def load(self, model_path: str, **kwargs) -> None:
        """
        Load model and tokenizer from the given path or HF repo.

        Args:
            model_path: Local path or HF Hub model identifier.
            **kwargs: Model-specific loading options (dtype, device, etc.).
        """
        pass

    @abstractmethod
    def encode(self, text: str, *, add_special_tokens: bool = True) -> list[int]:
        """Tokenize `text`, by default with the tokenizer's special prefix tokens (BOS etc.)."""
        pass

    @abstractmethod
    def decode(self, token_ids: Sequence[int]) -> str:
        """Detokenize `token_ids`, skipping special tokens."""
        pass

    @abstractmethod
    def token_to_id(self, token: str) -> int | None:
        """Look up a vocabulary entry (added tokens included); None if absent."""
        pass

    @abstractmethod
    def open_session(self) -> DecodeSession:
        """Create an isolated decode session over the shared weights."""
        pass

    @property
    @abstractmethod
    def model_info(self) -> dict[str, Any]:
        """
        Return metadata about the loaded model.

        Returns:
            Dict with keys like 'model_path', 'dtype', 'device', etc.
        """
        pass

    def unload(self) -> None:
        """
        Unload the model and free resources.

        Default implementation does nothing; override if cleanup is needed.
        """
        pass
