# Model-family adapters
#
# Each adapter implements a common interface for:
#   - Loading model + tokenizer
#   - Tokenizer capability (encode / decode / vocabulary lookup)
#   - Opening isolated, KV-cached decode sessions
#
# The engine uses adapters to stay model-agnostic.

from .base import BaseAdapter, DecodeSession

__all__ = ["BaseAdapter", "DecodeSession"]
