"""
Tests for visioncast/client/creation_status_poller.py.

The API is simulated with ``httpx.MockTransport`` answering from a script
of status reads, and the poller's sleep is replaced with a recorder, so
no test waits in real time.
"""

import httpx
import pytest

import visioncast.client.creation_api_client
import visioncast.client.creation_status_poller

PollerState = visioncast.client.creation_status_poller.PollerState


def _creation(status: str, **fields) -> dict:
    return {"_id": "c1", "status": status, **fields}


class _ScriptedCreationsApi:
    """
    Serves one submission answer and then the scripted read answers in
    order; the last read answer repeats once the script is exhausted.
    Each script entry is a creation dict, an ``httpx.Response``, or an
    exception to raise.
    """

    def __init__(self, read_script, submission_response=None) -> None:
        self.read_script = list(read_script)
        self.submission_response = submission_response or httpx.Response(
            201,
            json={"status": "success", "data": {"creation": _creation("generating")}},
        )
        self.read_count = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            if isinstance(self.submission_response, Exception):
                raise type(self.submission_response)(str(self.submission_response), request=request)
            return self.submission_response

        self.read_count += 1
        scripted_answer = self.read_script[min(self.read_count, len(self.read_script)) - 1]
        if isinstance(scripted_answer, Exception):
            raise type(scripted_answer)(str(scripted_answer), request=request)
        if isinstance(scripted_answer, httpx.Response):
            return httpx.Response(
                scripted_answer.status_code,
                headers=scripted_answer.headers,
                content=scripted_answer.content,
            )
        return httpx.Response(200, json={"status": "success", "data": {"creation": scripted_answer}})


def _make_poller(scripted_api: _ScriptedCreationsApi, maximum_polling_attempts: int = 5):
    recorded_sleeps: list[float] = []

    async def record_sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)

    creation_api_client = visioncast.client.creation_api_client.CreationApiClient(
        base_url="http://api.test",
        access_token="token",
        http_client=httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(scripted_api)),
    )
    poller = visioncast.client.creation_status_poller.CreationStatusPoller(
        creation_api_client,
        polling_interval_seconds=2.0,
        maximum_polling_attempts=maximum_polling_attempts,
        sleep=record_sleep,
    )
    return poller, recorded_sleeps


def _error_response(status_code: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(status_code, json={"error": {"code": code, "message": message, "correlation_id": "x"}})


class TestGenerate:

    @pytest.mark.asyncio
    async def test_success_after_generating_reads(self):
        scripted_api = _ScriptedCreationsApi(
            [
                _creation("generating"),
                _creation("generating"),
                _creation("completed", fileUrl="https://image.example/c1.jpg"),
            ]
        )
        poller, recorded_sleeps = _make_poller(scripted_api)

        outcome = await poller.generate("A red fox in snow")

        assert outcome.state == PollerState.SUCCEEDED
        assert outcome.succeeded is True
        assert outcome.result_url == "https://image.example/c1.jpg"
        assert outcome.creation_identifier == "c1"
        assert outcome.attempts == 3
        assert outcome.error_message is None
        assert recorded_sleeps == [2.0, 2.0, 2.0]
        assert poller.state == PollerState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_rejected_submission_fails_without_polling(self):
        scripted_api = _ScriptedCreationsApi(
            [],
            submission_response=_error_response(400, "prompt_rejected", "Prompt contains inappropriate content."),
        )
        poller, recorded_sleeps = _make_poller(scripted_api)

        outcome = await poller.generate("gore")

        assert outcome.state == PollerState.FAILED
        assert outcome.error_message == "Prompt contains inappropriate content."
        assert outcome.creation_identifier is None
        assert scripted_api.read_count == 0
        assert recorded_sleeps == []

    @pytest.mark.asyncio
    async def test_unreachable_submission_fails(self):
        scripted_api = _ScriptedCreationsApi([], submission_response=httpx.ConnectError("refused"))
        poller, _ = _make_poller(scripted_api)

        outcome = await poller.generate("A red fox in snow")

        assert outcome.state == PollerState.FAILED
        assert outcome.error_message == "Could not reach the creations API."


class TestPollUntilTerminal:

    @pytest.mark.asyncio
    async def test_server_failure_is_reported_with_its_error(self):
        scripted_api = _ScriptedCreationsApi([_creation("failed", error="Failed to generate image: boom")])
        poller, _ = _make_poller(scripted_api)

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.FAILED
        assert outcome.error_message == "Failed to generate image: boom"
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_failed_without_error_uses_default_message(self):
        poller, _ = _make_poller(_ScriptedCreationsApi([_creation("failed")]))

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.error_message == visioncast.client.creation_status_poller.DEFAULT_FAILURE_MESSAGE

    @pytest.mark.asyncio
    async def test_running_out_of_attempts_is_a_timeout_not_a_failure(self):
        scripted_api = _ScriptedCreationsApi([_creation("generating")])
        poller, recorded_sleeps = _make_poller(scripted_api, maximum_polling_attempts=4)

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.TIMED_OUT
        assert outcome.timed_out is True
        assert outcome.succeeded is False
        assert outcome.error_message == visioncast.client.creation_status_poller.TIMED_OUT_MESSAGE
        assert outcome.attempts == 4
        assert scripted_api.read_count == 4
        assert len(recorded_sleeps) == 4

    @pytest.mark.asyncio
    async def test_server_errors_and_unreachable_reads_keep_polling(self):
        scripted_api = _ScriptedCreationsApi(
            [
                _error_response(503, "unavailable", "Try later"),
                httpx.ConnectError("refused"),
                _creation("completed", fileUrl="https://image.example/c1.jpg"),
            ]
        )
        poller, _ = _make_poller(scripted_api)

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.SUCCEEDED
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test_unreadable_success_bodies_use_up_attempts(self):
        scripted_api = _ScriptedCreationsApi([httpx.Response(200, text="<html>gateway</html>")])
        poller, _ = _make_poller(scripted_api, maximum_polling_attempts=3)

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.TIMED_OUT
        assert poller.state == PollerState.TIMED_OUT
        assert outcome.attempts == 3
        assert scripted_api.read_count == 3

    @pytest.mark.asyncio
    async def test_unreadable_body_then_completed_succeeds(self):
        scripted_api = _ScriptedCreationsApi(
            [
                httpx.Response(200, json={"status": "success", "data": {}}),
                _creation("completed", fileUrl="https://image.example/c1.jpg"),
            ]
        )
        poller, _ = _make_poller(scripted_api)

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.SUCCEEDED
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_client_error_ends_polling(self):
        scripted_api = _ScriptedCreationsApi(
            [_error_response(403, "creation_access_forbidden", "You do not have permission to access this creation.")]
        )
        poller, _ = _make_poller(scripted_api)

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.FAILED
        assert outcome.error_message == "You do not have permission to access this creation."
        assert scripted_api.read_count == 1

    @pytest.mark.asyncio
    async def test_deleted_creation_ends_polling(self):
        poller, _ = _make_poller(_ScriptedCreationsApi([_creation("deleted")]))

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.FAILED
        assert outcome.error_message == visioncast.client.creation_status_poller.DELETED_CREATION_MESSAGE

    @pytest.mark.asyncio
    async def test_completed_without_file_url_is_a_failure(self):
        poller, _ = _make_poller(_ScriptedCreationsApi([_creation("completed", fileUrl=None)]))

        outcome = await poller.poll_until_terminal("c1")

        assert outcome.state == PollerState.FAILED
        assert outcome.result_url is None


class TestRestartability:

    @pytest.mark.asyncio
    async def test_poller_is_reset_between_runs(self):
        scripted_api = _ScriptedCreationsApi([_creation("failed", error="boom")])
        poller, _ = _make_poller(scripted_api)

        first_outcome = await poller.poll_until_terminal("c1")
        scripted_api.read_script = [_creation("completed", fileUrl="https://image.example/c2.jpg")]
        second_outcome = await poller.poll_until_terminal("c2")

        assert first_outcome.state == PollerState.FAILED
        assert second_outcome.state == PollerState.SUCCEEDED
        assert second_outcome.error_message is None
        assert second_outcome.creation_identifier == "c2"
        assert second_outcome.attempts == 1

    def test_new_poller_is_idle(self):
        poller, _ = _make_poller(_ScriptedCreationsApi([]))

        assert poller.state == PollerState.IDLE
        assert poller.attempts == 0
