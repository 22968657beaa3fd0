"""
AI Gateway — OpenAI-compatible chat endpoint over the credential pool.

Caller flow:
  POST /gateway/v1/chat/completions
  Authorization: Bearer <service JWT>

Processing:
  1. Infer the pooled service from the model name
  2. Lease the best key for that service from the pool
  3. Call the provider with it; the lease reports the outcome
  4. On a key-related failure, wait a little and fail over to a key not yet
     tried by this request (up to gateway_max_attempts)
  5. No eligible key left → 503 "try again shortly", never a raw error
"""
import asyncio
import logging
import time
import uuid
from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from keypool.config import settings
from keypool.core.dependencies import Caller, Pool
from keypool.core.exceptions import PoolExhaustedError, UnknownServiceError
from keypool.providers.base import ProviderCallError, ProviderResponse
from keypool.providers.registry import infer_service, make_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gateway/v1", tags=["gateway"])

UNAVAILABLE_MESSAGE = "AI service temporarily unavailable, please try again shortly"


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage]
    max_tokens: int | None = None
    temperature: float | None = None


@router.post("/chat/completions")
async def chat_completions(
    request: ChatCompletionRequest,
    caller: Caller,
    pool: Pool,
) -> JSONResponse:
    service_name = infer_service(request.model)
    request_id = str(uuid.uuid4())
    start_ts = time.monotonic()

    messages = [m.model_dump() for m in request.messages]
    kwargs: dict[str, Any] = {}
    if request.max_tokens:
        kwargs["max_tokens"] = request.max_tokens
    if request.temperature is not None:
        kwargs["temperature"] = request.temperature

    failures: list[str] = []
    tried: set[uuid.UUID] = set()
    for attempt in range(1, settings.gateway_max_attempts + 1):
        if attempt > 1:
            await asyncio.sleep(settings.gateway_retry_delay_seconds * (attempt - 1))
        try:
            async with pool.lease(service_name, exclude=tried) as handle:
                provider = make_provider(service_name, handle.secret)
                try:
                    provider_response = await provider.generate_completion(
                        model=request.model,
                        messages=messages,
                        **kwargs,
                    )
                finally:
                    await provider.close()
        except PoolExhaustedError:
            logger.warning(
                "Pool exhausted for %s (request %s, caller %s, failures so far: %s)",
                service_name,
                request_id,
                caller,
                failures or "none",
            )
            raise HTTPException(503, UNAVAILABLE_MESSAGE)
        except UnknownServiceError:
            raise HTTPException(503, f"AI service '{service_name}' is not configured")
        except ProviderCallError as exc:
            failures.append(exc.reason.value)
            tried.add(handle.credential_id)
            logger.warning(
                "Attempt %d/%d for request %s failed on credential %s: %s",
                attempt,
                settings.gateway_max_attempts,
                request_id,
                handle.credential_id,
                exc,
            )
            continue

        latency_ms = int((time.monotonic() - start_ts) * 1000)
        return JSONResponse(content=_completion_body(
            request_id, request.model, provider_response,
            credential_id=str(handle.credential_id),
            attempts=attempt,
            latency_ms=latency_ms,
        ))

    logger.error("Request %s failed on every attempt: %s", request_id, failures)
    raise HTTPException(502, f"Provider error after {len(failures)} attempts: {', '.join(failures)}")


def _completion_body(
    request_id: str,
    model: str,
    response: ProviderResponse,
    *,
    credential_id: str,
    attempts: int,
    latency_ms: int,
) -> dict[str, Any]:
    return {
        "id": f"chatcmpl-{request_id}",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": response.content},
                "finish_reason": "stop",
            }
        ],
        "usage": {
            "prompt_tokens": response.input_tokens,
            "completion_tokens": response.output_tokens,
            "total_tokens": response.total_tokens,
        },
        "x_pool": {
            "credential_id": credential_id,
            "attempts": attempts,
            "latency_ms": latency_ms,
        },
    }
