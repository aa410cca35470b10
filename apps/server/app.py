"""FastAPI app exposing grounded question answering.

The HTTP layer lives under `apps/` and can depend on heavier deps (FastAPI, uvicorn).
All model execution is delegated to the core service (`tera/engine`).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from starlette.responses import JSONResponse

from tera._version import __version__
from tera.engine.answer import AnswerService
from tera.engine.errors import GenerationCancelled, GenerationFailure, MissingStopToken
from tera.engine.registry import list_models as registered_models

logger = logging.getLogger(__name__)


def create_app(
    *,
    service: AnswerService,
    model_id: str,
    http_max_concurrency: int | None = None,
    http_max_new_tokens: int | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        service.shutdown()

    app = FastAPI(title="Tera Answer Server", version=__version__, lifespan=lifespan)

    http_semaphore: asyncio.Semaphore | None = None
    if http_max_concurrency is not None:
        try:
            http_max_concurrency = int(http_max_concurrency)
        except Exception as exc:
            raise ValueError("http_max_concurrency must be an integer") from exc
        if http_max_concurrency > 0:
            http_semaphore = asyncio.Semaphore(http_max_concurrency)
        elif http_max_concurrency < 0:
            raise ValueError("http_max_concurrency must be >= 0")

    if http_max_new_tokens is not None:
        try:
            http_max_new_tokens = int(http_max_new_tokens)
        except Exception as exc:
            raise ValueError("http_max_new_tokens must be an integer") from exc
        if http_max_new_tokens <= 0:
            raise ValueError("http_max_new_tokens must be > 0")

    async def _try_acquire_semaphore() -> None:
        if http_semaphore is None:
            return
        try:
            await asyncio.wait_for(http_semaphore.acquire(), timeout=0.001)
        except asyncio.TimeoutError as exc:
            raise HTTPException(status_code=429, detail="Server is busy") from exc

    def _release_semaphore() -> None:
        if http_semaphore is not None:
            http_semaphore.release()

    async def _json_object(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except Exception as exc:
            raise HTTPException(status_code=400, detail="Request body must be valid JSON.") from exc
        if isinstance(payload, dict):
            return payload
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    # -------------------------------------------------------------------------
    # Health & Models
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "model": model_id, "loaded": service.handle.loaded}

    @app.get("/v1/models")
    async def list_models() -> dict[str, Any]:
        now = int(time.time())
        return {
            "object": "list",
            "data": [
                {
                    "id": spec.name,
                    "object": "model",
                    "created": now,
                    "owned_by": "tera",
                    "repo_id": spec.repo_id,
                    "active": spec.name == model_id,
                }
                for spec in registered_models()
            ],
        }

    # -------------------------------------------------------------------------
    # Answering
    # -------------------------------------------------------------------------

    @app.post("/v1/answer")
    async def answer(request: Request) -> JSONResponse:
        payload = await _json_object(request)

        query = payload.get("query")
        if not isinstance(query, str):
            raise HTTPException(status_code=400, detail="'query' is required and must be a string.")

        context = payload.get("context", [])
        if not isinstance(context, list):
            raise HTTPException(status_code=400, detail="'context' must be a list.")

        overrides = payload.get("generation")
        if overrides is not None and not isinstance(overrides, dict):
            raise HTTPException(status_code=400, detail="'generation' must be an object.")

        if http_max_new_tokens is not None and overrides and "max_new_tokens" in overrides:
            try:
                requested = int(overrides["max_new_tokens"])
            except Exception as exc:
                raise HTTPException(status_code=400, detail="'generation.max_new_tokens' must be an integer.") from exc
            if requested > http_max_new_tokens:
                raise HTTPException(
                    status_code=400,
                    detail=f"'generation.max_new_tokens' exceeds server cap ({http_max_new_tokens}).",
                )

        await _try_acquire_semaphore()
        try:
            result = await service.answer_detailed(query, context, overrides=overrides)
        except ValueError as exc:
            # EmptyQuery / EmptyPrompt / invalid context or overrides.
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except MissingStopToken as exc:
            logger.error("model/tokenizer mismatch: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        except GenerationCancelled as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        except GenerationFailure as exc:
            logger.exception("generation failed")
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        finally:
            _release_semaphore()

        return JSONResponse(
            {
                "id": f"answer-{uuid.uuid4().hex}",
                "object": "answer",
                "model": model_id,
                "answer": result.text,
                "finish_reason": result.finish_reason,
                "usage": {
                    "prompt_tokens": result.prompt_tokens,
                    "completion_tokens": result.generated_tokens,
                    "total_tokens": result.prompt_tokens + result.generated_tokens,
                },
                "timing": {
                    "total_s": result.timing.total_s,
                    "tok_per_s": result.timing.tok_per_s,
                },
            }
        )

    return app
