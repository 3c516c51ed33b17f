"""Text generation client and the team context used to ground prompts."""
from __future__ import annotations

import json
import logging
from typing import Iterable, List, Optional, Protocol, Sequence
from urllib import error as urllib_error, request as urllib_request

from psycopg2.extensions import connection as PgConnection

from ...app_context import dict_cursor

logger = logging.getLogger("compliance.generation")


class GenerationError(RuntimeError):
    """The generation service failed or returned an unusable reply."""


class GenerationClient(Protocol):
    def generate(self, model: str, prompt: str) -> str:
        ...


class ContextProvider(Protocol):
    """Supplies recent account context lines (schedule entries) for a prompt."""

    def recent_context(self, account_id: str, *, limit: int = 5) -> Sequence[str]:
        ...


def build_prompt(prompt: str, context_lines: Iterable[str]) -> str:
    lines = [line.strip() for line in context_lines if line and line.strip()]
    if not lines:
        return prompt
    context_block = "\n".join(f"- {line}" for line in lines)
    return f"Team schedule:\n{context_block}\n\nMessage:\n{prompt}"


class HttpGenerationClient:
    """Posts ``{"model", "prompt"}`` as JSON and reads the reply text back."""

    def __init__(self, *, api_url: str, api_key: Optional[str] = None, timeout_seconds: float = 30.0) -> None:
        if not api_url:
            raise ValueError("api_url is required")
        self._api_url = api_url
        self._api_key = api_key
        self._timeout = timeout_seconds

    def generate(self, model: str, prompt: str) -> str:
        body = json.dumps({"model": model, "prompt": prompt}).encode("utf-8")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        req = urllib_request.Request(self._api_url, data=body, headers=headers, method="POST")

        logger.debug("Calling generation model %s with prompt prefix %r", model, prompt[:50])
        try:
            with urllib_request.urlopen(req, timeout=self._timeout) as response:
                raw = response.read()
            payload = json.loads(raw.decode("utf-8"))
        except (urllib_error.URLError, urllib_error.HTTPError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning(
                "Generation request failed",
                extra={"generation_model": model, "error": str(exc)},
            )
            raise GenerationError(str(exc)) from exc
        except TimeoutError as exc:
            logger.warning("Generation request to model %s timed out", model)
            raise GenerationError("Generation request timed out") from exc

        text = payload.get("text") if isinstance(payload, dict) else None
        if text is None and isinstance(payload, dict):
            text = payload.get("result")
        if not isinstance(text, str):
            raise GenerationError("Generation reply did not contain text")
        return text


class PostgresScheduleContextProvider:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def recent_context(self, account_id: str, *, limit: int = 5) -> List[str]:
        if limit <= 0:
            return []
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT title, starts_at, location
                FROM schedule_entries
                WHERE account_id = %s
                ORDER BY starts_at DESC
                LIMIT %s
                """,
                (account_id, limit),
            )
            rows = cursor.fetchall() or []

        lines: List[str] = []
        for row in rows:
            starts_at = row.get("starts_at")
            when = starts_at.strftime("%a %d %b %H:%M") if starts_at else "TBD"
            line = f"{row['title']} on {when}"
            if row.get("location"):
                line = f"{line} at {row['location']}"
            lines.append(line)
        return lines


__all__ = [
    "ContextProvider",
    "GenerationClient",
    "GenerationError",
    "HttpGenerationClient",
    "PostgresScheduleContextProvider",
    "build_prompt",
]
