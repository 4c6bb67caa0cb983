import asyncio
import json
import logging
from collections.abc import Iterable
from typing import Any

from openai import AsyncOpenAI, OpenAI
from openai.types.chat import ChatCompletion, ChatCompletionMessageParam

__all__ = ["completion_text", "extract_json_object", "safe_chat_completion"]


async def safe_chat_completion(
    client: AsyncOpenAI | OpenAI,
    *,
    model: str,
    messages: Iterable[dict[str, Any]],
    logger: logging.Logger | None = None,
    retry_attempts: int = 3,
    retry_backoff: float = 1.0,
    **kwargs,
) -> ChatCompletion:
    """Call the chat completions endpoint, retrying transient failures.

    Parameters
    ----------
    client:
        An ``openai.AsyncOpenAI`` instance. Sync clients are rejected.
    model:
        Model name, e.g. ``"gpt-4o-mini"``.
    messages:
        Chat messages forwarded unchanged.
    logger:
        Optional logger; defaults to this module's logger.
    retry_attempts:
        Total number of attempts before giving up.
    retry_backoff:
        Base delay in seconds; attempt ``n`` waits ``backoff * 2**(n-1)``.
    **kwargs:
        Extra arguments for ``client.chat.completions.create``.

    Raises
    ------
    Exception
        The last error once every attempt has failed.
    """
    if client is None:
        raise RuntimeError("OpenAI client is not initialised.")
    if not isinstance(client, AsyncOpenAI):
        raise TypeError("Sync OpenAI client provided to async safe_chat_completion.")

    logger = logger or logging.getLogger(__name__)
    typed_messages: Iterable[ChatCompletionMessageParam] = messages  # type: ignore[assignment]
    last_exc: Exception | None = None
    loop = asyncio.get_running_loop()

    for attempt in range(1, retry_attempts + 1):
        started = loop.time()
        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=typed_messages,
                **kwargs,
            )
        except Exception as exc:  # noqa: BLE001
            last_exc = exc
            logger.warning("OpenAI call failed (attempt %s/%s): %s", attempt, retry_attempts, exc)
            if attempt < retry_attempts:
                await asyncio.sleep(retry_backoff * (2 ** (attempt - 1)))
            continue

        logger.debug(
            "OpenAI completions.create call succeeded | model=%s | latency=%.2fs",
            model,
            loop.time() - started,
        )
        return completion

    assert last_exc is not None
    raise last_exc


def completion_text(completion: ChatCompletion) -> str:
    """Content of the first choice, or an empty string."""
    if not completion.choices:
        return ""
    return (completion.choices[0].message.content or "").strip()


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the outermost ``{...}`` block of a model reply.

    Models often wrap JSON in prose or code fences; everything outside the
    first ``{`` and the last ``}`` is ignored.

    Raises
    ------
    ValueError
        If no JSON object can be found or decoded.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object found in model response")
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed JSON in model response: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON is not an object")
    return parsed
