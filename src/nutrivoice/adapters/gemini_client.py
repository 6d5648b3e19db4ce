"""Gemini generateContent client."""

from dataclasses import dataclass

import httpx

from nutrivoice.services.extraction import GenerativeModelClient, UpstreamResponse


@dataclass
class HttpxGeminiClient(GenerativeModelClient):
    """HTTPX-backed client for the Gemini REST API."""

    api_key: str
    base_url: str
    http_client: httpx.AsyncClient
    timeout: float = 60.0

    @classmethod
    def create(cls, api_key: str, base_url: str) -> "HttpxGeminiClient":
        """Create a Gemini client with a managed httpx session."""
        return cls(api_key=api_key, base_url=base_url, http_client=httpx.AsyncClient())

    async def generate_content(
        self, *, model: str, payload: dict[str, object]
    ) -> UpstreamResponse:
        """POST a generateContent request and return the raw response."""
        url = f"{self.base_url}/models/{model}:generateContent"
        response = await self.http_client.post(
            url,
            params={"key": self.api_key},
            json=payload,
            timeout=self.timeout,
        )
        try:
            body = response.json()
        except ValueError:
            body = None
        return UpstreamResponse(
            status_code=response.status_code,
            body=body if isinstance(body, dict) else None,
            text=response.text,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
