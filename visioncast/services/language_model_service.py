"""
Service for communicating with the Gemini generative language API.

The service calls the REST endpoint
``POST /v1beta/models/{model}:generateContent`` with the API key in the
``x-goog-api-key`` header, and extracts the text of the first candidate.
It knows nothing about prompts or images: callers hand it a complete
instruction and receive plain text back.

Failure classification
----------------------
Every transport or upstream failure is raised as
``LanguageModelServiceUnavailableError``.  Two upstream statuses receive a
recognisable detail message because callers decide on retries from it:

- HTTP 429 (quota exhausted or rate limited): the detail contains
  ``quota``.
- HTTP 503 (model overloaded): the detail contains ``overloaded``.

A response that arrives but carries no usable text raises
``PromptEnhancementError``.

Oversized response bodies (larger than ``maximum_response_bytes``) are
treated as upstream failures to bound memory use.
"""

import httpx
import structlog

import visioncast.exceptions

logger = structlog.get_logger()

CONNECTION_TEST_INSTRUCTION = "Say 'API connection successful'"

_UPSTREAM_STATUS_DETAILS: dict[int, str] = {
    429: "The language model quota is exhausted or the request was rate limited (HTTP 429).",
    503: "The language model is overloaded (HTTP 503).",
}


class LanguageModelService:
    """
    Asynchronous HTTP client for the Gemini ``generateContent`` API.

    This service maintains a persistent ``httpx.AsyncClient`` with a
    configurable connection pool.  The client must be closed explicitly
    via ``close`` when the application shuts down.

    The service is stateless with respect to request processing and is
    safe for concurrent use from multiple async tasks, including the
    background generation runs.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str,
        request_timeout_seconds: float,
        base_url: str = "https://generativelanguage.googleapis.com",
        connection_pool_size: int = 10,
        maximum_response_bytes: int = 1_048_576,
    ) -> None:
        """
        Initialise the language model service.

        Args:
            api_key: Gemini API key, sent as the ``x-goog-api-key`` header.
            model_name: Model identifier, for example ``gemini-1.5-flash``.
            request_timeout_seconds: Maximum time to wait for one call.
            base_url: Base URL of the Gemini REST API.
            connection_pool_size: Maximum number of concurrent connections
                in the ``httpx`` pool.
            maximum_response_bytes: Responses larger than this are treated
                as upstream failures.
        """
        self.model_name = model_name
        self._maximum_response_bytes = maximum_response_bytes
        self.http_client = httpx.AsyncClient(
            base_url=base_url,
            headers={"x-goog-api-key": api_key},
            timeout=httpx.Timeout(request_timeout_seconds),
            limits=httpx.Limits(
                max_connections=connection_pool_size,
                max_keepalive_connections=connection_pool_size,
            ),
        )

    @property
    def _generate_content_path(self) -> str:
        return f"/v1beta/models/{self.model_name}:generateContent"

    async def generate_text(self, instruction: str) -> str:
        """
        Send a single-turn instruction to the model and return its text.

        Args:
            instruction: The complete instruction text.

        Returns:
            The concatenated text parts of the first candidate, with
            leading and trailing whitespace stripped.

        Raises:
            LanguageModelServiceUnavailableError:
                When the API cannot be reached, times out, returns a
                non-success status, or the response exceeds the size limit.
            PromptEnhancementError:
                When the API responds but the body carries no text.
        """
        request_body = {"contents": [{"parts": [{"text": instruction}]}]}

        try:
            http_response = await self.http_client.post(
                self._generate_content_path,
                json=request_body,
            )
            http_response.raise_for_status()
        except httpx.ConnectError as connection_error:
            logger.error(
                "language_model_connection_failed",
                error=str(connection_error),
            )
            raise visioncast.exceptions.LanguageModelServiceUnavailableError(
                detail="The language model API is not reachable.",
            ) from connection_error
        except httpx.HTTPStatusError as http_status_error:
            upstream_status_code = http_status_error.response.status_code
            logger.error(
                "language_model_http_error",
                status_code=upstream_status_code,
            )
            raise visioncast.exceptions.LanguageModelServiceUnavailableError(
                detail=_UPSTREAM_STATUS_DETAILS.get(
                    upstream_status_code,
                    f"The language model API returned HTTP status {upstream_status_code}.",
                ),
            ) from http_status_error
        except httpx.TimeoutException as timeout_error:
            logger.error(
                "language_model_timeout",
                error=str(timeout_error),
            )
            raise visioncast.exceptions.LanguageModelServiceUnavailableError(
                detail="The request to the language model API timed out.",
            ) from timeout_error
        except httpx.RequestError as request_error:
            logger.error(
                "language_model_request_failed",
                error_type=type(request_error).__name__,
                error=str(request_error),
            )
            raise visioncast.exceptions.LanguageModelServiceUnavailableError(
                detail=(
                    f"An unexpected communication error occurred with the "
                    f"language model API: {type(request_error).__name__}."
                ),
            ) from request_error

        response_body_bytes = len(http_response.content)
        if response_body_bytes > self._maximum_response_bytes:
            logger.error(
                "language_model_response_too_large",
                response_bytes=response_body_bytes,
                maximum_bytes=self._maximum_response_bytes,
            )
            raise visioncast.exceptions.LanguageModelServiceUnavailableError(
                detail=(
                    f"The language model response body ({response_body_bytes} bytes) "
                    f"exceeds the configured maximum ({self._maximum_response_bytes} bytes)."
                ),
            )

        try:
            response_body = http_response.json()
            response_parts = response_body["candidates"][0]["content"]["parts"]
            generated_text = "".join(part.get("text", "") for part in response_parts)
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as parsing_error:
            logger.error(
                "language_model_response_parsing_failed",
                error="Unexpected response structure from the language model API",
            )
            raise visioncast.exceptions.PromptEnhancementError(
                detail="The language model returned an unexpected response structure.",
            ) from parsing_error

        if not generated_text.strip():
            raise visioncast.exceptions.PromptEnhancementError(
                detail="The language model returned an empty response.",
            )

        return generated_text.strip()

    async def test_connection(self) -> dict[str, object]:
        """
        Perform a short round trip to confirm the API key and model work.

        Never raises: failures are reported in the returned dictionary.

        Returns:
            ``{"success": True, "response", "message", "model"}`` on
            success, or ``{"success": False, "error"}`` on failure.
        """
        try:
            round_trip_text = await self.generate_text(CONNECTION_TEST_INSTRUCTION)
        except visioncast.exceptions.ServiceError as service_error:
            logger.warning("language_model_connection_test_failed", error=service_error.detail)
            return {"success": False, "error": service_error.detail}

        return {
            "success": True,
            "response": round_trip_text,
            "message": "Language model API connection is working",
            "model": self.model_name,
        }

    async def check_health(self) -> bool:
        """
        Verify that the configured model is reachable with the API key.

        Sends ``GET /v1beta/models/{model}`` with a 5 second timeout and
        returns ``True`` only for HTTP 200.  Network errors are treated
        as unhealthy.
        """
        try:
            response = await self.http_client.get(f"/v1beta/models/{self.model_name}", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        """Close the underlying HTTP client and release its connections."""
        await self.http_client.aclose()
