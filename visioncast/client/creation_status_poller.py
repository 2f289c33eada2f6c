"""
Client-side poller that follows a creation to a terminal state.

``CreationStatusPoller`` is an explicit state machine::

    IDLE ──► SUBMITTING ──► POLLING ──► SUCCEEDED
                 │             ├──────► FAILED
                 └──► FAILED   └──────► TIMED_OUT

The poller reads the creation every ``polling_interval_seconds`` for at
most ``maximum_polling_attempts`` reads.  Running out of attempts is
``TIMED_OUT``, not ``FAILED``: the generation may still finish on the
server, and the caller is told to try again later.

Unreachable server, 5xx answers and unreadable success bodies use up an
attempt and polling goes on.
A 4xx answer (the token expired, the creation is gone or belongs to
someone else) ends polling in ``FAILED`` with the API's message, as does
observing a deleted creation.

Every call to ``generate`` or ``poll_until_terminal`` starts from a clean
state, so one poller can be reused for any number of generations.
"""

import asyncio
import dataclasses
import enum
import typing

import httpx
import structlog

import visioncast.client.creation_api_client

logger = structlog.get_logger()

TIMED_OUT_MESSAGE = "Image generation is still processing. Please check back later."
DELETED_CREATION_MESSAGE = "The creation was deleted before it finished."
DEFAULT_FAILURE_MESSAGE = "Image generation failed."


class PollerState(enum.StrEnum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclasses.dataclass(frozen=True)
class CreationPollingOutcome:
    """The end state of one generation as seen by the client."""

    state: PollerState
    creation_identifier: str | None = None
    result_url: str | None = None
    error_message: str | None = None
    attempts: int = 0
    creation: dict[str, typing.Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == PollerState.SUCCEEDED

    @property
    def timed_out(self) -> bool:
        return self.state == PollerState.TIMED_OUT


class CreationStatusPoller:
    """
    Submit a prompt and poll its creation until it completes, fails or
    the polling budget runs out.

    Args:
        creation_api_client: Client used for submission and reads.
        polling_interval_seconds: Wait before each read.
        maximum_polling_attempts: Reads allowed before giving up.
        sleep: Awaitable used to wait between reads; tests pass a fake.
    """

    def __init__(
        self,
        creation_api_client: visioncast.client.creation_api_client.CreationApiClient,
        polling_interval_seconds: float = 2.0,
        maximum_polling_attempts: int = 30,
        sleep: typing.Callable[[float], typing.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.creation_api_client = creation_api_client
        self.polling_interval_seconds = polling_interval_seconds
        self.maximum_polling_attempts = maximum_polling_attempts
        self._sleep = sleep
        self._reset()

    def _reset(self) -> None:
        self.state = PollerState.IDLE
        self.creation_identifier: str | None = None
        self.attempts = 0
        self.result_url: str | None = None
        self.error_message: str | None = None
        self.last_creation: dict[str, typing.Any] | None = None

    def _finish(self, state: PollerState, error_message: str | None = None) -> CreationPollingOutcome:
        self.state = state
        self.error_message = error_message
        logger.info(
            "creation_polling_finished",
            creation_id=self.creation_identifier,
            state=state.value,
            attempts=self.attempts,
        )
        return CreationPollingOutcome(
            state=state,
            creation_identifier=self.creation_identifier,
            result_url=self.result_url,
            error_message=error_message,
            attempts=self.attempts,
            creation=self.last_creation,
        )

    async def generate(
        self,
        prompt: str,
        style: str = "realistic",
        size: str = "1024x1024",
        quality: str = "high",
    ) -> CreationPollingOutcome:
        """Submit a prompt, then poll the new creation to a terminal state."""
        self._reset()
        self.state = PollerState.SUBMITTING

        try:
            creation = await self.creation_api_client.submit_image_generation(prompt, style, size, quality)
        except visioncast.client.creation_api_client.CreationApiError as submission_error:
            return self._finish(PollerState.FAILED, submission_error.message)
        except httpx.TransportError as transport_error:
            logger.warning("creation_submission_unreachable", error=str(transport_error))
            return self._finish(PollerState.FAILED, "Could not reach the creations API.")

        return await self.poll_until_terminal(creation["_id"])

    async def poll_until_terminal(self, creation_identifier: str) -> CreationPollingOutcome:
        """Poll an existing creation to a terminal state."""
        self._reset()
        self.creation_identifier = creation_identifier
        self.state = PollerState.POLLING

        while self.attempts < self.maximum_polling_attempts:
            await self._sleep(self.polling_interval_seconds)
            self.attempts += 1

            try:
                creation = await self.creation_api_client.get_creation(creation_identifier)
            except visioncast.client.creation_api_client.CreationApiError as read_error:
                if read_error.is_transient:
                    logger.warning(
                        "creation_poll_transient_error",
                        creation_id=creation_identifier,
                        attempt=self.attempts,
                        status_code=read_error.status_code,
                    )
                    continue
                return self._finish(PollerState.FAILED, read_error.message)
            except httpx.TransportError as transport_error:
                logger.warning(
                    "creation_poll_unreachable",
                    creation_id=creation_identifier,
                    attempt=self.attempts,
                    error=str(transport_error),
                )
                continue

            self.last_creation = creation
            creation_status = creation.get("status")

            if creation_status == "completed":
                if not creation.get("fileUrl"):
                    return self._finish(PollerState.FAILED, "The creation completed without a file URL.")
                self.result_url = creation["fileUrl"]
                return self._finish(PollerState.SUCCEEDED)
            if creation_status == "failed":
                return self._finish(PollerState.FAILED, creation.get("error") or DEFAULT_FAILURE_MESSAGE)
            if creation_status == "deleted":
                return self._finish(PollerState.FAILED, DELETED_CREATION_MESSAGE)

        return self._finish(PollerState.TIMED_OUT, TIMED_OUT_MESSAGE)
