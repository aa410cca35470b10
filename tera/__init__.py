"""
Tera - answers questions from your saved content with a local language model.

Retrieved context snippets and a question are assembled into a ChatML prompt,
then a local causal LM decodes the answer token by token.

Quick Start:
    import asyncio
    from tera import AnswerService

    # Stops on the model's end-of-text token or a newline.
    service = AnswerService.for_model("phi-2", device="cpu")
    text = asyncio.run(service.answer(
        "What is the capital of France?",
        [{"content": "Paris is the capital of France.", "metadata": {"id": 1}}],
    ))

Submodules:
    - tera.engine.prompting: Prompt assembly
    - tera.engine.generation: The decode loop
    - tera.engine.sampling: Seeded sampling and repetition penalty
    - tera.engine.answer: Async public entry point
    - tera.engine.registry: Named models and adapters
"""

from tera._version import __version__

from tera.engine.answer import NO_RELEVANT_CONTENT_MESSAGE, AnswerConfig, AnswerService
from tera.engine.errors import (
    AnswerError,
    EmptyPrompt,
    EmptyQuery,
    GenerationCancelled,
    GenerationFailure,
    MissingStopToken,
)
from tera.engine.generation import GenerationEngine
from tera.engine.model_handle import SharedModelHandle
from tera.engine.prompting import assemble_prompt
from tera.engine.registry import DEFAULT_MODEL, list_models, load_handle, resolve_model
from tera.engine.sampling import SamplingPolicy, apply_repeat_penalty
from tera.engine.types import ContextSnippet, GenerationConfig, GenerationResult, Timing

__all__ = [
    # Version
    "__version__",
    # Entry points
    "AnswerService",
    "AnswerConfig",
    "NO_RELEVANT_CONTENT_MESSAGE",
    "GenerationEngine",
    "SharedModelHandle",
    "assemble_prompt",
    # Sampling
    "SamplingPolicy",
    "apply_repeat_penalty",
    # Models
    "DEFAULT_MODEL",
    "list_models",
    "load_handle",
    "resolve_model",
    # Types
    "ContextSnippet",
    "GenerationConfig",
    "GenerationResult",
    "Timing",
    # Errors
    "AnswerError",
    "EmptyQuery",
    "EmptyPrompt",
    "MissingStopToken",
    "GenerationFailure",
    "GenerationCancelled",
]
