"""Generation service and media fetch capabilities.

The job runner only talks to GenerationService and MediaFetcher. The fal
queue binding and the HTTP fetcher below are the default implementations;
any other vendor can be dropped in by implementing the two interfaces.

fal queue protocol (https://queue.fal.run):
  POST /{model}          -> {request_id, status_url, response_url}
  GET  status_url        -> {status: IN_QUEUE | IN_PROGRESS | COMPLETED}
  GET  response_url      -> model output, e.g. {video: {url: ...}}
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import httpx

from .errors import ExternalServiceError
from .models import JobHandle


FAL_QUEUE_URL = "https://queue.fal.run"

DEFAULT_TEXT_TO_VIDEO_MODEL = "fal-ai/hunyuan-video"
DEFAULT_IMAGE_TO_VIDEO_MODEL = "fal-ai/veo3/fast/image-to-video"

_RUNNING_STATUSES = {"IN_QUEUE", "IN_PROGRESS"}


@dataclass(frozen=True)
class GenerationParams:
    model: str
    resolution: tuple[int, int]
    fps: int
    duration: float
    seed_image_url: Optional[str] = None


class PollState(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


@dataclass(frozen=True)
class PollStatus:
    state: PollState
    result_url: Optional[str] = None
    error: Optional[str] = None


# ── Capability interfaces ─────────────────────────────────────────


class GenerationService(ABC):
    """Submit a generation request and report on its progress."""

    @abstractmethod
    async def submit(self, prompt: str, params: GenerationParams) -> JobHandle:
        """Submit a request; return an opaque handle."""

    @abstractmethod
    async def poll(self, handle: JobHandle) -> PollStatus:
        """Report whether the request is running, completed or failed."""


class MediaFetcher(ABC):
    """Download a finished result to a local file."""

    @abstractmethod
    async def fetch(self, url: str, dest: Path) -> Path:
        """Download url to dest; raise ExternalServiceError on failure."""


# ── fal queue binding ─────────────────────────────────────────────


def extract_video_url(result: dict[str, Any]) -> Optional[str]:
    """Find the video URL in a model output payload.

    Models disagree on shape: {video: {url}}, {video_url} or {url}.
    """
    video = result.get("video")
    if isinstance(video, dict) and video.get("url"):
        return video["url"]
    if isinstance(video, str) and video:
        return video
    return result.get("video_url") or result.get("url")


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("error")
        if detail:
            return str(detail)
    return str(payload)[:200]


def _json_body(resp: httpx.Response, what: str) -> dict[str, Any]:
    try:
        payload = resp.json()
    except ValueError as exc:
        raise ExternalServiceError(
            f"{what} returned invalid JSON: {resp.text[:200]!r}",
            status_code=resp.status_code,
        ) from exc
    if not isinstance(payload, dict):
        raise ExternalServiceError(
            f"{what} returned {type(payload).__name__}, expected a JSON object",
            status_code=resp.status_code,
        )
    return payload


class FalQueueService(GenerationService):
    """GenerationService backed by the fal queue REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = FAL_QUEUE_URL,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("fal API key is empty (set FAL_KEY)")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout, connect=30.0)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Key {self._api_key}"},
        )

    @staticmethod
    def build_input(prompt: str, params: GenerationParams) -> dict[str, Any]:
        width, height = params.resolution
        payload: dict[str, Any] = {
            "prompt": prompt,
            "width": width,
            "height": height,
            "fps": params.fps,
            "duration": params.duration,
        }
        if params.seed_image_url:
            payload["image_url"] = params.seed_image_url
        return payload

    async def submit(self, prompt: str, params: GenerationParams) -> JobHandle:
        url = f"{self._base_url}/{params.model}"
        try:
            async with self._client() as client:
                resp = await client.post(url, json=self.build_input(prompt, params))
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Submit to {params.model} failed: {exc}") from exc

        if not resp.is_success:
            raise ExternalServiceError(
                f"Submit to {params.model} failed: {resp.status_code} {_error_detail(resp)}",
                status_code=resp.status_code,
            )
        data = _json_body(resp, f"Submit to {params.model}")
        request_id = data.get("request_id")
        if not request_id:
            raise ExternalServiceError(f"Submit to {params.model} returned no request_id")
        return JobHandle(
            request_id=request_id,
            model=params.model,
            status_url=data.get("status_url") or f"{url}/requests/{request_id}/status",
            response_url=data.get("response_url") or f"{url}/requests/{request_id}",
        )

    async def poll(self, handle: JobHandle) -> PollStatus:
        try:
            async with self._client() as client:
                resp = await client.get(handle.status_url)
                if not resp.is_success:
                    raise ExternalServiceError(
                        f"Status check failed: {resp.status_code} {_error_detail(resp)}",
                        status_code=resp.status_code,
                    )
                data = _json_body(resp, "Status check")
                status = data.get("status")
                if data.get("error"):
                    return PollStatus(PollState.failed, error=str(data["error"]))
                if status in _RUNNING_STATUSES:
                    return PollStatus(PollState.running)
                if status != "COMPLETED":
                    # Unknown status: keep polling, the attempt ceiling bounds it.
                    print(f"  WARN   unknown fal status {status!r} for {handle.request_id}", flush=True)
                    return PollStatus(PollState.running)

                result = await client.get(handle.response_url)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Status check failed: {exc}") from exc

        if not result.is_success:
            return PollStatus(
                PollState.failed,
                error=f"Result fetch failed: {result.status_code} {_error_detail(result)}",
            )
        video_url = extract_video_url(_json_body(result, "Result fetch"))
        if not video_url:
            return PollStatus(PollState.failed, error="Completed result has no video URL")
        return PollStatus(PollState.completed, result_url=video_url)


# ── HTTP media fetch ──────────────────────────────────────────────


class HttpMediaFetcher(MediaFetcher):
    """Stream a result URL to disk. Any non-2xx response is a failure."""

    def __init__(
        self,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = httpx.Timeout(timeout, connect=30.0)
        self._transport = transport

    async def fetch(self, url: str, dest: Path) -> Path:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as resp:
                    if not resp.is_success:
                        raise ExternalServiceError(
                            f"Download failed: {resp.status_code} {resp.reason_phrase}",
                            status_code=resp.status_code,
                        )
                    with open(dest, "wb") as f:
                        async for chunk in resp.aiter_bytes():
                            f.write(chunk)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Download error: {exc}") from exc
        return dest
