"""One-shot recognition over HTTP.

Posts a single recorded clip to ``{base}/recognize`` as multipart field
``file`` and reads back ``{"match": {...} | null}``. This is the
non-streaming path; the streaming path lives in ``streaming.py``.
"""

from __future__ import annotations

from typing import Optional

import httpx

from errors import RecognitionFailed
from models import AudioChunk, MatchResult


class HttpRecognizer:
    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.strip().rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def recognize(self, chunk: AudioChunk) -> Optional[MatchResult]:
        """Return the best match for ``chunk``, or None when nothing matched."""
        files = {"file": ("recording.wav", chunk.data, chunk.mime_type)}
        try:
            resp = await self._client.post(f"{self._base_url}/recognize", files=files)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RecognitionFailed(
                f"Recognition failed: {exc.response.status_code} {exc.response.reason_phrase}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RecognitionFailed(f"Recognition request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise RecognitionFailed(f"Invalid response: {exc}") from exc
        if not isinstance(data, dict):
            raise RecognitionFailed("Invalid response: expected a JSON object")

        payload = data.get("match")
        if payload is None:
            return None
        try:
            return MatchResult.from_payload(payload)
        except ValueError as exc:
            raise RecognitionFailed(f"Invalid match in response: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
