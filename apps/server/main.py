"""Tera answer server entrypoint (FastAPI + uvicorn).

Example:
    python -m apps.server.main --model phi-2 --host 0.0.0.0 --port 8788
"""

from __future__ import annotations

import argparse
import logging

from apps.server.app import create_app
from tera.engine.answer import AnswerConfig, AnswerService
from tera.engine.registry import DEFAULT_MODEL, resolve_model
from tera.engine.types import GenerationConfig
from tera.runtime import dtype_from_string, select_device


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Tera answer server")
    p.add_argument("--model", default=DEFAULT_MODEL, help="Registered model name, path or HF repo id (default: %(default)s)")
    p.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    p.add_argument("--port", type=int, default=8788, help="Bind port (default: 8788)")

    p.add_argument("--cpu", action="store_true", help="Force CPU even when an accelerator is available")
    p.add_argument("--dtype", default="float32", help="Torch dtype: float16|bfloat16|float32 (default: float32)")
    p.add_argument("--chunk-size", type=int, default=2048, help="Max tokens per prefill forward pass (default: 2048)")

    defaults = GenerationConfig()
    p.add_argument("--seed", type=int, default=defaults.seed, help="Sampling seed (default: %(default)s)")
    p.add_argument(
        "--temperature",
        type=float,
        default=defaults.temperature,
        help="Sampling temperature; 0 for greedy (default: %(default)s)",
    )
    p.add_argument("--top-p", type=float, default=None, help="Nucleus sampling threshold (default: off)")
    p.add_argument(
        "--repeat-penalty",
        type=float,
        default=defaults.repeat_penalty,
        help="Repetition penalty, 1.0 disables (default: %(default)s)",
    )
    p.add_argument(
        "--repeat-last-n",
        type=int,
        default=defaults.repeat_window,
        help="Trailing tokens the repetition penalty looks at (default: %(default)s)",
    )
    p.add_argument(
        "--max-new-tokens",
        type=int,
        default=defaults.max_new_tokens,
        help="Max generated tokens per answer (default: %(default)s)",
    )

    p.add_argument("--workers", type=int, default=2, help="Generation worker threads (default: 2)")
    p.add_argument("--timeout", type=float, default=0.0, help="Per-answer deadline in seconds (0 = none)")
    p.add_argument(
        "--http-max-concurrency",
        type=int,
        default=0,
        help="Max in-flight /v1/answer requests (0 = unlimited)",
    )
    p.add_argument(
        "--http-max-new-tokens",
        type=int,
        default=0,
        help="Reject requests with generation.max_new_tokens above this cap (0 = unlimited)",
    )
    p.add_argument("--preload", action="store_true", help="Load the model before accepting requests")
    p.add_argument("--log-level", default="info", help="Logging level (default: info)")
    return p.parse_args()


def main() -> None:
    args = _parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    spec = resolve_model(args.model)
    device = select_device(cpu=args.cpu)
    dtype = dtype_from_string(args.dtype)

    generation = GenerationConfig(
        seed=args.seed,
        temperature=args.temperature if args.temperature and args.temperature > 0 else None,
        top_p=args.top_p,
        repeat_penalty=args.repeat_penalty,
        repeat_window=args.repeat_last_n,
        max_new_tokens=args.max_new_tokens,
    )
    config = AnswerConfig(
        generation=generation,
        max_workers=args.workers,
        timeout_s=args.timeout if args.timeout > 0 else None,
    )

    # Stop settings (eos token, newline) come from the model spec.
    service = AnswerService.for_model(
        spec.name,
        config=config,
        device=device,
        dtype=dtype,
        chunk_size=args.chunk_size,
    )
    print(
        "[server] model: "
        f"name={spec.name!r} repo={spec.repo_id!r} device={device!r} dtype={args.dtype!r}",
        flush=True,
    )
    if args.preload:
        print("[server] loading model...", flush=True)
        service.handle.get()
        print("[server] model loaded", flush=True)
    else:
        print("[server] model will load on the first request", flush=True)

    app = create_app(
        service=service,
        model_id=spec.name,
        http_max_concurrency=None if args.http_max_concurrency <= 0 else int(args.http_max_concurrency),
        http_max_new_tokens=None if args.http_max_new_tokens <= 0 else int(args.http_max_new_tokens),
    )

    try:
        import uvicorn
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("uvicorn is required to run the server.") from exc

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
