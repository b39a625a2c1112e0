"""
Image-generation API client.

Calls ``POST /v1/images/generations`` with ``{model, prompt, size}`` and a
bearer key. The provider answers with either a hosted URL or a
base64-encoded image for each generated item; :meth:`ImageClient.save`
writes either form to disk.
"""

from pathlib import Path
from typing import Optional, Union
import base64
import binascii

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..core.config import Settings
from ..models.schemas import GeneratedImage, ImageGenerationRequest

logger = structlog.get_logger()

GENERATIONS_PATH = "/v1/images/generations"


class ImageGenerationError(Exception):
    """Raised when the image API rejects a request or returns an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, ImageGenerationError) and exc.status_code in (429, 500, 502, 503, 504)


class ImageClient:
    """Synchronous client for the image-generation endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com",
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_key:
            raise ValueError("An API key is required for image generation")
        self._transport = transport
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, api_key: Optional[str] = None) -> "ImageClient":
        return cls(
            api_key=api_key or settings.openai_api_key or "",
            base_url=settings.image_api_base_url,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ImageClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    def generate(
        self,
        prompt: str,
        model: str = "gpt-image-1",
        size: str = "1024x1024",
    ) -> GeneratedImage:
        """Generate one image.

        Args:
            prompt: Text description of the image
            model: Image model name
            size: ``WIDTHxHEIGHT`` or ``auto``

        Returns:
            The first generated image (URL or base64 payload)

        Raises:
            ImageGenerationError: On a non-2xx status or a body without image data
        """
        payload = ImageGenerationRequest(model=model, prompt=prompt, size=size)
        logger.info("Requesting image", model=model, size=size, prompt_chars=len(prompt))

        response = self._client.post(GENERATIONS_PATH, json=payload.model_dump())
        if response.status_code >= 400:
            raise ImageGenerationError(_error_message(response), status_code=response.status_code)

        try:
            items = response.json()["data"]
            return GeneratedImage.model_validate(items[0])
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ImageGenerationError(f"Unexpected image response: {e}", status_code=response.status_code) from e

    def save(self, image: GeneratedImage, path: Union[str, Path]) -> Path:
        """Write a generated image to ``path``, decoding or downloading as needed."""
        path = Path(path)
        if image.b64_json:
            try:
                data = base64.b64decode(image.b64_json, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ImageGenerationError(f"Invalid base64 image payload: {e}") from e
        else:
            # Hosted URLs are pre-signed; do not send our API key to them
            with httpx.Client(timeout=self._client.timeout, follow_redirects=True, transport=self._transport) as downloader:
                response = downloader.get(image.url)
            if response.status_code >= 400:
                raise ImageGenerationError(
                    f"Image download failed with status {response.status_code}",
                    status_code=response.status_code,
                )
            data = response.content

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Image saved", path=str(path), bytes=len(data))
        return path


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Image request failed with status {response.status_code}: {response.text[:200]}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"Image request failed with status {response.status_code}"
