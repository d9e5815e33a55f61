"""
Remote Reasoning Client
Async HTTP client for the remote entity / intent classification fallback.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import RemoteReasoningError
from ..models import ExtractedEntity, IntentClassification, IntentLabel
from ..settings import EngineSettings, get_settings

logger = logging.getLogger(__name__)


class RemoteEntity(BaseModel):
    """Entity as returned by the remote service."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    entity_type: str = Field(default="miscellaneous", alias="entityType")
    confidence: float = Field(ge=0.0, le=1.0)


class RemoteIntent(BaseModel):
    """Intent as returned by the remote service."""

    label: IntentLabel
    confidence: float = Field(ge=0.0, le=1.0)


class RemoteClassification(BaseModel):
    """Response body of POST /classify."""

    entities: List[RemoteEntity] = Field(default_factory=list)
    intent: RemoteIntent


class RemoteReasoningClient:
    """
    Remote reasoning fallback with the same output shape as local extraction.

    POSTs {"text": ...} to /classify and validates the JSON response.
    Transport and HTTP status errors are retried with exponential backoff.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        backoff_base_s: float = 1.0,
    ):
        """
        Initialize remote reasoning client.

        Args:
            settings: Engine settings (base URL, API key, timeout, retries)
            client: Pre-built httpx client (e.g. with a MockTransport in tests)
            backoff_base_s: First retry delay; doubles on every attempt

        Raises:
            RemoteReasoningError: If no base URL is configured and no client is given
        """
        self.settings = settings or get_settings()
        self.max_retries = self.settings.remote_reasoning_max_retries
        self.backoff_base_s = backoff_base_s

        if client is None:
            if not self.settings.remote_reasoning_url:
                raise RemoteReasoningError("REMOTE_REASONING_URL is not configured")
            headers = {"Content-Type": "application/json"}
            if self.settings.remote_reasoning_api_key:
                headers["Authorization"] = f"Bearer {self.settings.remote_reasoning_api_key}"
            client = httpx.AsyncClient(
                base_url=self.settings.remote_reasoning_url,
                timeout=self.settings.remote_reasoning_timeout,
                headers=headers,
            )
        self._client = client

        logger.info("Remote reasoning client initialized")

    async def classify(self, text: str) -> Tuple[List[ExtractedEntity], IntentClassification]:
        """
        Classify text remotely.

        Args:
            text: Query text

        Returns:
            Tuple of (entities, intent)

        Raises:
            RemoteReasoningError: If every attempt failed or the response is malformed
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._client.post("/classify", json={"text": text})
                response.raise_for_status()
                payload = response.json()
                break
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                if attempt < self.max_retries:
                    wait = self.backoff_base_s * (2**attempt)
                    logger.warning(
                        f"Remote classify failed (attempt {attempt + 1}/{self.max_retries + 1}): "
                        f"{exc}. Retrying in {wait:.2f}s"
                    )
                    await asyncio.sleep(wait)
        else:
            raise RemoteReasoningError(
                f"Remote classify failed after {self.max_retries + 1} attempts: {last_error}"
            )

        try:
            parsed = RemoteClassification.model_validate(payload)
        except ValidationError as exc:
            raise RemoteReasoningError(
                "Malformed remote classification response", details={"errors": exc.errors()}
            )

        entities = [
            ExtractedEntity(text=e.text.strip(), entity_type=e.entity_type, confidence=e.confidence)
            for e in parsed.entities
        ]
        intent = IntentClassification(label=parsed.intent.label, confidence=parsed.intent.confidence)

        logger.debug(
            f"Remote classify: {len(entities)} entities, intent={intent.label.value} "
            f"({intent.confidence:.2f})"
        )
        return entities, intent

    async def close(self) -> None:
        await self._client.aclose()
