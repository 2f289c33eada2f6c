"""
Async HTTP client for the creations API.

Wraps the two calls a generating client needs, submitting a prompt and
reading a creation back, and turns the API's error envelope into
``CreationApiError``.  A success answer whose body is not the expected
``{"data": {"creation": {...}}}`` shape is reported the same way, with the
code ``unexpected_response``.  Transport failures (``httpx.TransportError``)
are left to propagate so that callers can tell an unreachable server from
an error answer.
"""

import typing

import httpx
import structlog

logger = structlog.get_logger()

UNEXPECTED_RESPONSE_CODE = "unexpected_response"


class CreationApiError(Exception):
    """An error response, or an unreadable success response, from the creations API."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"{status_code} {code}: {message}")

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    @property
    def is_transient(self) -> bool:
        """True for 5xx answers and for success answers with an unreadable body."""
        return self.is_server_error or self.status_code < 400


def _build_creation_api_error(response: httpx.Response) -> CreationApiError:
    try:
        error_body = response.json().get("error", {})
    except ValueError:
        error_body = {}
    if not isinstance(error_body, dict):
        error_body = {}
    return CreationApiError(
        status_code=response.status_code,
        code=str(error_body.get("code", UNEXPECTED_RESPONSE_CODE)),
        message=str(error_body.get("message") or response.reason_phrase or "Unexpected response from the API."),
    )


def _extract_creation(response: httpx.Response) -> dict[str, typing.Any]:
    try:
        response_body = response.json()
    except ValueError:
        response_body = None

    creation = None
    if isinstance(response_body, dict) and isinstance(response_body.get("data"), dict):
        creation = response_body["data"].get("creation")
    if not isinstance(creation, dict):
        raise CreationApiError(
            status_code=response.status_code,
            code=UNEXPECTED_RESPONSE_CODE,
            message="The API answered without a creation in the response body.",
        )
    return creation


class CreationApiClient:
    """
    Authenticated client for ``/creations`` endpoints.

    Either pass an existing ``httpx.AsyncClient`` (its base URL must point
    at the API) or let the client create and own one.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        request_timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(request_timeout_seconds),
        )
        self._authorization_headers = {"Authorization": f"Bearer {access_token}"}

    async def _request_creation(self, method: str, path: str, **request_arguments: typing.Any) -> dict[str, typing.Any]:
        response = await self.http_client.request(
            method,
            path,
            headers=self._authorization_headers,
            **request_arguments,
        )
        try:
            if response.is_error:
                raise _build_creation_api_error(response)
            return _extract_creation(response)
        except CreationApiError as creation_api_error:
            logger.info(
                "creation_api_error_response",
                method=method,
                path=path,
                status_code=creation_api_error.status_code,
                code=creation_api_error.code,
            )
            raise

    async def submit_image_generation(
        self,
        prompt: str,
        style: str = "realistic",
        size: str = "1024x1024",
        quality: str = "high",
    ) -> dict[str, typing.Any]:
        """
        Submit a prompt and return the new creation (status ``generating``).

        Raises:
            CreationApiError: If the API rejects the submission or its
                answer cannot be read.
            httpx.TransportError: If the API cannot be reached.
        """
        return await self._request_creation(
            "POST",
            "/creations/generate/image",
            json={"prompt": prompt, "style": style, "size": size, "quality": quality, "type": "image"},
        )

    async def get_creation(self, creation_identifier: str) -> dict[str, typing.Any]:
        """
        Read one creation as returned by ``GET /creations/{creation_id}``.

        Raises:
            CreationApiError: On an error response such as 403 or 404, or
                when the answer cannot be read.
            httpx.TransportError: If the API cannot be reached.
        """
        return await self._request_creation("GET", f"/creations/{creation_identifier}")

    async def close(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "CreationApiClient":
        return self

    async def __aexit__(self, *exception_information: object) -> None:
        await self.close()
