from __future__ import annotations

import json
import logging
import math
import re
import time
from dataclasses import dataclass
from http.client import HTTPException
from pathlib import Path
from typing import Any, Callable, Sequence
from urllib import request
from urllib.error import HTTPError, URLError

from screenstory.config import LLMSettings
from screenstory.models import DEFAULT_RELEVANCE, Frame

DEFAULT_MODEL = "qwen2.5:7b-instruct-q4_K_M"
DEFAULT_ENDPOINT = "http://localhost:11434"
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_SECONDS = 1.0
PROMPT_TEMPLATE_PATH = Path(__file__).resolve().parent / "prompts" / "cluster_judgment.txt"

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

# Everything a single Ollama round trip may raise; each becomes a ParseError.
_TRANSPORT_ERRORS = (
    HTTPError,
    URLError,
    HTTPException,
    TimeoutError,
    OSError,
    ValueError,
    KeyError,
    TypeError,
    AttributeError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClusterJudgment:
    is_coherent_task: bool
    task_name: str
    description: str
    success: bool | None
    relevance: float


# Applied whenever the service fails or replies with something unusable.
DEFAULT_FAILURE_JUDGMENT = ClusterJudgment(
    is_coherent_task=False,
    task_name="unknown-task",
    description="Unable to determine task",
    success=None,
    relevance=0.3,
)


@dataclass(frozen=True, slots=True)
class Parsed:
    judgment: ClusterJudgment


@dataclass(frozen=True, slots=True)
class ParseError:
    reason: str
    raw_text: str = ""

    @property
    def judgment(self) -> ClusterJudgment:
        return DEFAULT_FAILURE_JUDGMENT


JudgmentResult = Parsed | ParseError
ClusterJudge = Callable[[Sequence[Frame]], JudgmentResult]


def parse_judgment(text: str) -> JudgmentResult:
    """Extract and validate a judgment from free model text. Never raises."""

    if not isinstance(text, str):
        return ParseError(reason="reply is not text")

    match = _JSON_OBJECT.search(text)
    if match is None:
        return ParseError(reason="no JSON object in reply", raw_text=text)

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        return ParseError(reason=f"invalid JSON: {exc.msg}", raw_text=text)

    if not isinstance(payload, dict):
        return ParseError(reason="reply JSON is not an object", raw_text=text)

    return Parsed(judgment=_judgment_from_payload(payload))


def judge_cluster(
    sample_frames: Sequence[Frame],
    *,
    endpoint: str = DEFAULT_ENDPOINT,
    model: str = DEFAULT_MODEL,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
) -> JudgmentResult:
    """Ask a local Ollama model whether sampled frames form one coherent task."""

    if not sample_frames:
        return ParseError(reason="no frames to judge")

    attempts = max(0, max_retries) + 1
    result: JudgmentResult = ParseError(reason="not attempted")

    for attempt in range(attempts):
        try:
            response_text = _request_ollama(
                endpoint=endpoint,
                model=model,
                prompt=format_prompt(sample_frames),
                timeout_seconds=timeout_seconds,
            )
            result = parse_judgment(response_text)
        except _TRANSPORT_ERRORS as exc:
            result = ParseError(reason=f"{type(exc).__name__}: {exc}")

        if isinstance(result, Parsed):
            return result

        logger.debug("Cluster judgment attempt %d/%d failed: %s", attempt + 1, attempts, result.reason)
        if attempt + 1 < attempts and backoff_seconds > 0:
            time.sleep(backoff_seconds * (attempt + 1))

    return result


class OllamaClusterJudge:
    """Callable judge bound to one model configuration."""

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "OllamaClusterJudge":
        if settings.provider.lower() != "ollama":
            raise ValueError(f"Unsupported LLM provider '{settings.provider}'. Expected: ollama.")
        return cls(
            endpoint=settings.endpoint,
            model=settings.model,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            backoff_seconds=settings.backoff_seconds,
        )

    def __call__(self, sample_frames: Sequence[Frame]) -> JudgmentResult:
        return judge_cluster(
            sample_frames,
            endpoint=self.endpoint,
            model=self.model,
            timeout_seconds=self.timeout_seconds,
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
        )


def format_prompt(sample_frames: Sequence[Frame]) -> str:
    template = PROMPT_TEMPLATE_PATH.read_text(encoding="utf-8").strip()
    context = "\n\n".join(_describe_frame(idx, frame) for idx, frame in enumerate(sample_frames, start=1))
    return f"{template}\n\nScreenshots:\n{context}\n"


def _describe_frame(index: int, frame: Frame) -> str:
    success = {True: "Yes", False: "No"}.get(frame.is_success, "Unknown")
    tags = json.dumps(sorted(frame.tags), ensure_ascii=False)
    return (
        f"Screenshot {index}:\n"
        f"  Time: {frame.timestamp.isoformat()}\n"
        f"  App: {frame.app_name}\n"
        f"  Summary: {frame.ai_summary or 'No summary'}\n"
        f"  Success: {success}\n"
        f"  Tags: {tags}"
    )


def _request_ollama(*, endpoint: str, model: str, prompt: str, timeout_seconds: int) -> str:
    body = json.dumps(
        {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
        }
    ).encode("utf-8")

    req = request.Request(
        f"{endpoint.rstrip('/')}/api/generate",
        data=body,
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        raw_body = response.read().decode("utf-8")

    payload = json.loads(raw_body)
    if not isinstance(payload, dict):
        raise ValueError(f"Ollama returned {type(payload).__name__} instead of a JSON object.")
    if payload.get("error"):
        raise ValueError(f"Ollama error: {payload['error']}")

    content = payload.get("response")
    if not isinstance(content, str) or not content.strip():
        raise ValueError("Ollama reply has no text in its 'response' field.")
    return content


def _judgment_from_payload(payload: dict[str, Any]) -> ClusterJudgment:
    task_name = payload.get("task_name")
    description = payload.get("description")
    success = payload.get("success")

    return ClusterJudgment(
        is_coherent_task=payload.get("is_coherent_task") is True,
        task_name=task_name.strip() if isinstance(task_name, str) and task_name.strip() else "unknown-task",
        description=description.strip() if isinstance(description, str) and description.strip() else "Unknown task",
        success=success if isinstance(success, bool) else None,
        relevance=_coerce_relevance(payload.get("relevance")),
    )


def _coerce_relevance(raw_value: Any) -> float:
    if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
        return DEFAULT_RELEVANCE
    if math.isnan(raw_value):
        return DEFAULT_RELEVANCE
    return max(0.0, min(1.0, float(raw_value)))
