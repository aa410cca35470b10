# Grounded answer engine
#
# This package turns a question plus retrieved context into an answer
# produced by a local causal language model.
#
# Key components:
#   - adapters/       Model-family specific adapters (weights + tokenizer)
#   - registry.py     Maps model names to adapters and hub ids
#   - prompting.py    Prompt assembly from query + context snippets
#   - sampling.py     Seeded sampling and repetition penalty
#   - generation.py   The token-by-token decode loop
#   - answer.py       Async public entry point
