"""Avatar/transport provider: realtime streams that speak generated replies."""

import os
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from barback.core.errors import ProviderUnavailableError
from barback.core.logging import get_logger

logger = get_logger(__name__)

DID_BASE_URL = os.getenv("DID_BASE_URL", "https://api.d-id.com")
DID_API_KEY = os.getenv("DID_API_KEY", "")
DEFAULT_AVATAR_SOURCE_URL = os.getenv("DEFAULT_AVATAR_SOURCE_URL", "")
DID_VOICE_ID = os.getenv("DID_VOICE_ID", "en-US-JennyMultilingualV2Neural")
DID_TIMEOUT_SECONDS = float(os.getenv("DID_TIMEOUT_SECONDS", "15"))

PROVIDER_NAME = "avatar"


@dataclass(frozen=True)
class TransportHandle:
    """Provider-side identifiers for one stream. Opaque to everything but the provider."""

    stream_id: str
    session_token: str


@dataclass(frozen=True)
class TransportOffer:
    """What the client needs to answer the provider's WebRTC offer."""

    offer: dict[str, Any]
    ice_servers: list[dict[str, Any]] = field(default_factory=list)


class AvatarProvider(Protocol):
    async def open_session(
        self, avatar_source: Optional[str] = None
    ) -> tuple[TransportHandle, TransportOffer]:
        ...

    async def complete_negotiation(self, handle: TransportHandle, answer: dict[str, Any]) -> None:
        ...

    async def submit_candidate(self, handle: TransportHandle, candidate: dict[str, Any]) -> None:
        ...

    async def speak(self, handle: TransportHandle, text: str) -> dict[str, Any]:
        ...

    async def close_session(self, handle: TransportHandle) -> None:
        ...


class DIDAvatarProvider:
    """D-ID style talks/streams API over httpx."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = DID_BASE_URL,
        api_key: str = DID_API_KEY,
        default_source_url: str = DEFAULT_AVATAR_SOURCE_URL,
        voice_id: str = DID_VOICE_ID,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=DID_TIMEOUT_SECONDS,
        )
        self._headers = {
            "Authorization": f"Basic {api_key}",
            "Content-Type": "application/json",
        }
        self.default_source_url = default_source_url
        self.voice_id = voice_id

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, method: str, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.request(method, path, json=payload, headers=self._headers)
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                PROVIDER_NAME, f"{method} {path} failed", details={"error": type(exc).__name__}
            ) from exc

    @staticmethod
    def _json_body(response: httpx.Response, action: str) -> dict[str, Any]:
        """The response body as a JSON object, or ProviderUnavailableError."""
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                PROVIDER_NAME,
                f"{action} returned a non-JSON body",
                details={"status_code": response.status_code},
            ) from exc
        if not isinstance(data, dict):
            raise ProviderUnavailableError(
                PROVIDER_NAME,
                f"{action} returned an unexpected body",
                details={"status_code": response.status_code},
            )
        return data

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        description = None
        if isinstance(body, dict):
            description = body.get("description")
        description = description or response.reason_phrase
        raise ProviderUnavailableError(
            PROVIDER_NAME,
            f"{action} failed: {description}",
            details={"status_code": response.status_code},
        )

    async def open_session(
        self, avatar_source: Optional[str] = None
    ) -> tuple[TransportHandle, TransportOffer]:
        source_url = avatar_source or self.default_source_url
        if not source_url:
            raise ProviderUnavailableError(PROVIDER_NAME, "no avatar source configured")

        response = await self._call(
            "POST", "/talks/streams", {"source_url": source_url, "stream_warmup": True}
        )
        self._raise_for_status(response, "stream creation")
        data = self._json_body(response, "stream creation")
        try:
            handle = TransportHandle(stream_id=data["id"], session_token=data["session_id"])
        except KeyError as exc:
            raise ProviderUnavailableError(
                PROVIDER_NAME,
                "stream creation response missing identifiers",
                details={"missing": exc.args[0]},
            ) from exc
        logger.info("avatar.stream_created", stream_id=handle.stream_id)
        return handle, TransportOffer(offer=data.get("offer", {}), ice_servers=data.get("ice_servers", []))

    async def complete_negotiation(self, handle: TransportHandle, answer: dict[str, Any]) -> None:
        response = await self._call(
            "POST",
            f"/talks/streams/{handle.stream_id}/sdp",
            {"answer": answer, "session_id": handle.session_token},
        )
        self._raise_for_status(response, "stream start")

    async def submit_candidate(self, handle: TransportHandle, candidate: dict[str, Any]) -> None:
        response = await self._call(
            "POST",
            f"/talks/streams/{handle.stream_id}/ice",
            {
                "candidate": candidate.get("candidate"),
                "sdpMid": candidate.get("sdpMid"),
                "sdpMLineIndex": candidate.get("sdpMLineIndex"),
                "session_id": handle.session_token,
            },
        )
        self._raise_for_status(response, "ice candidate")

    async def speak(self, handle: TransportHandle, text: str) -> dict[str, Any]:
        response = await self._call(
            "POST",
            f"/talks/streams/{handle.stream_id}",
            {
                "script": {
                    "type": "text",
                    "input": text,
                    "provider": {
                        "type": "microsoft",
                        "voice_id": self.voice_id,
                        "voice_config": {"style": "Cheerful"},
                    },
                },
                "config": {"stitch": True, "fluent": True, "pad_audio": 0.0},
                "session_id": handle.session_token,
            },
        )
        self._raise_for_status(response, "talk creation")
        return self._json_body(response, "talk creation")

    async def close_session(self, handle: TransportHandle) -> None:
        response = await self._call(
            "DELETE",
            f"/talks/streams/{handle.stream_id}",
            {"session_id": handle.session_token},
        )
        self._raise_for_status(response, "stream close")
