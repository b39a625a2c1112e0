"""Chat completion client returning structured JSON."""

from typing import Any, Dict, Optional
import json
import httpx
import structlog
from openai import AsyncOpenAI, APIConnectionError, APITimeoutError, RateLimitError, InternalServerError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..core.config import Settings

logger = structlog.get_logger()


class LLMResponseError(Exception):
    """The model answered, but not with a usable JSON object."""


class LLMClient:
    """Thin wrapper over the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        temperature: float = 0.4,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize LLM client.

        Args:
            api_key: OpenAI API key; without one the client is unconfigured
            model: Chat model name
            temperature: Sampling temperature
            timeout: Request timeout in seconds
            http_client: Optional httpx client for the OpenAI SDK
        """
        self.model = model
        self.temperature = temperature
        self.client = None
        if api_key:
            # Retries are handled by tenacity around complete_json
            self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0, http_client=http_client)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)),
        reraise=True,
    )
    async def complete_json(
        self,
        system: str,
        user: str,
        max_tokens: int = 1200,
    ) -> Dict[str, Any]:
        """Run a chat completion and parse the JSON object it returns.

        Args:
            system: System prompt
            user: User message
            max_tokens: Completion token cap

        Returns:
            Parsed JSON object

        Raises:
            RuntimeError: If no API key is configured
            LLMResponseError: If the response is empty or not a JSON object
        """
        if self.client is None:
            raise RuntimeError("LLM client is not configured")

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=self.temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMResponseError("Empty completion")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"Completion is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise LLMResponseError("Completion JSON is not an object")

        logger.debug("LLM completion parsed", model=self.model, keys=sorted(data))
        return data
