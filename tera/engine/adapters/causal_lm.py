"""Adapter for Hugging Face causal language models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

from .base import BaseAdapter, DecodeSession

if TYPE_CHECKING:
    import torch


# =============================================================================
# Decode Session
# =============================================================================


class CausalLMSession(DecodeSession):
    """KV-cached decode state for one run.

    The cache (`past_key_values`) and the absolute position are private to
    this session; the model weights are shared with every other session.
    """

    def __init__(self, model: Any, *, device: Any, chunk_size: int) -> None:
        self._model = model
        self._device = device
        self._chunk_size = chunk_size
        self._past_key_values: Any = None
        self._current_pos = 0

    @property
    def current_pos(self) -> int:
        return self._current_pos

    def forward(self, window: Sequence[int]) -> torch.Tensor:
        import torch

        if self._model is None:
            raise RuntimeError("Session is closed.")
        if not window:
            raise ValueError("forward() requires at least one token.")

        input_ids = torch.tensor([list(window)], dtype=torch.long, device=self._device)
        seq_len = input_ids.shape[1]
        num_chunks = (seq_len + self._chunk_size - 1) // self._chunk_size
        outputs = None

        # Chunked prefill for long prompts; a single decode step is one chunk.
        with torch.no_grad():
            for chunk_idx in range(num_chunks):
                chunk_start = chunk_idx * self._chunk_size
                chunk_end = min((chunk_idx + 1) * self._chunk_size, seq_len)
                abs_start = self._current_pos + chunk_start
                abs_end = self._current_pos + chunk_end
                cache_position = torch.arange(abs_start, abs_end, device=self._device)

                outputs = self._model(
                    input_ids[:, chunk_start:chunk_end],
                    past_key_values=self._past_key_values,
                    cache_position=cache_position,
                    use_cache=True,
                )
                self._past_key_values = outputs.past_key_values

        self._current_pos += seq_len
        return outputs.logits[0, -1, :]

    def close(self) -> None:
        self._past_key_values = None
        self._model = None


# =============================================================================
# Adapter
# =============================================================================


class CausalLMAdapter(BaseAdapter):
    """
    Adapter for `transformers` causal LMs (Phi-2, Mixtral and friends).

    Weights and tokenizer are loaded once and never mutated afterwards.
    Every generation run gets its own `CausalLMSession`, so concurrent runs
    do not see each other's KV cache.

    Example:
        >>> adapter = CausalLMAdapter()
        >>> adapter.load("cognitivecomputations/dolphin-2_6-phi-2", device="cpu")
        >>> session = adapter.open_session()
        >>> scores = session.forward(adapter.encode("Hello"))
    """

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def __init__(self) -> None:
        self._model = None
        self._tokenizer = None
        self._vocab: dict[str, int] = {}
        self._model_path: str | None = None
        self._device: str = "cpu"
        self._dtype = None
        self._chunk_size: int = 2048

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def model(self):
        """Access the underlying model (for advanced use cases)."""
        return self._model

    @property
    def tokenizer(self):
        """Access the underlying tokenizer."""
        return self._tokenizer

    @property
    def device(self) -> str:
        """Device the model is loaded on."""
        return self._device

    @property
    def model_info(self) -> dict[str, Any]:
        """Return model metadata."""
        return {
            "model_path": self._model_path,
            "device": self._device,
            "dtype": str(self._dtype),
            "loaded": self._model is not None,
            "vocab_size": len(self._vocab),
        }

    # -------------------------------------------------------------------------
    # Loading / Unloading
    # -------------------------------------------------------------------------

    def load(self, model_path: str, **kwargs) -> None:
        """Load a causal LM and its tokenizer.

        Args:
            model_path: Path to the model (local or HF hub). Hub downloads are
                cached by `transformers`.
            device: Device to load the model on (default: "cpu").
            dtype: Torch dtype (default: torch.float32).
            chunk_size: Max tokens per prefill forward pass (default: 2048).
            gguf_file: Optional GGUF weights file inside the repo.
            **kwargs: Additional kwargs passed to from_pretrained().
        """
        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer

        self._model_path = model_path
        self._device = kwargs.pop("device", "cpu")
        self._dtype = kwargs.pop("dtype", torch.float32)
        self._chunk_size = int(kwargs.pop("chunk_size", 2048))
        if self._chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")

        trust_remote_code = kwargs.pop("trust_remote_code", False)
        gguf_file = kwargs.pop("gguf_file", None)
        gguf_kwargs = {"gguf_file": gguf_file} if gguf_file else {}

        self._tokenizer = AutoTokenizer.from_pretrained(
            model_path,
            trust_remote_code=trust_remote_code,
            **gguf_kwargs,
        )
        self._model = AutoModelForCausalLM.from_pretrained(
            model_path,
            torch_dtype=self._dtype,
            trust_remote_code=trust_remote_code,
            **gguf_kwargs,
            **kwargs,
        )
        self._model.to(self._device)
        self._model.eval()
        self._vocab = dict(self._tokenizer.get_vocab())

    def unload(self) -> None:
        """Unload the model and free accelerator memory."""
        import gc
        import torch

        del self._model
        del self._tokenizer
        self._model = None
        self._tokenizer = None
        self._vocab = {}

        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    # -------------------------------------------------------------------------
    # Tokenizer capability
    # -------------------------------------------------------------------------

    def encode(self, text: str, *, add_special_tokens: bool = True) -> list[int]:
        self._ensure_loaded()
        return list(self._tokenizer.encode(text, add_special_tokens=add_special_tokens))

    def decode(self, token_ids: Sequence[int]) -> str:
        self._ensure_loaded()
        return self._tokenizer.decode(list(token_ids), skip_special_tokens=True)

    def token_to_id(self, token: str) -> int | None:
        self._ensure_loaded()
        return self._vocab.get(token)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def open_session(self) -> CausalLMSession:
        self._ensure_loaded()
        return CausalLMSession(self._model, device=self._model.device, chunk_size=self._chunk_size)

    # -------------------------------------------------------------------------
    # Internal: Validation
    # -------------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        """Raise if model/tokenizer not loaded."""
        if self._model is None or self._tokenizer is None:
            raise RuntimeError("Model not loaded. Call load() first.")
