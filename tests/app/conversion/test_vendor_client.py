"""
Unit tests for the vendor job client.

The client should:
1. Post to the right endpoint with the vendor's field names
2. Read the task id from `result` (or `id`)
3. Normalize status payloads, including model URL fallbacks
4. Translate HTTP failures into the conversion error taxonomy
"""

import json

import httpx
import pytest

from forge_core.conversions.models import GenerationConfig, TaskKind, TaskStatus
from forge_core.domain.exceptions import QuotaExceededError, TaskNotFoundError, TransientError
from forge_core.runtime import (
    NO_RETRY_POLICY,
    RetryPolicy,
    RunContext,
    ServiceHttpClient,
    TerminalError,
)

from app.conversion.services.vendor_client import VendorJobClient, VendorStatus


def make_client(handler, submit_attempts: int = 1) -> VendorJobClient:
    http = ServiceHttpClient(
        base_url="https://api.vendor.test",
        transport=httpx.MockTransport(handler),
        default_headers={"Authorization": "Bearer test-key"},
        retry_policy=NO_RETRY_POLICY,
    )
    return VendorJobClient(
        http_client=http,
        submit_policy=RetryPolicy(max_attempts=submit_attempts, base_delay=0.0, jitter=False),
    )


@pytest.fixture
def context():
    return RunContext.new(owner_id="user-1")


class TestBuildPayload:
    """Tests for request bodies."""

    def test_text_payload_uses_preview_mode(self):
        """Text jobs send a trimmed prompt in preview mode without texture_richness."""
        payload = VendorJobClient.build_payload(
            TaskKind.TEXT_TO_3D, "  a red dragon  ", GenerationConfig()
        )

        assert payload["mode"] == "preview"
        assert payload["prompt"] == "a red dragon"
        assert "texture_richness" not in payload
        assert payload["ai_model"] == "meshy-5"
        assert payload["target_polycount"] == 20000

    def test_image_payload_carries_image_url(self):
        config = GenerationConfig(art_style="cartoon", negative_prompt="blurry")

        payload = VendorJobClient.build_payload(
            TaskKind.IMAGE_TO_3D, "https://images/dragon.png", config
        )

        assert payload["image_url"] == "https://images/dragon.png"
        assert payload["art_style"] == "cartoon"
        assert payload["negative_prompt"] == "blurry"
        assert payload["texture_richness"] == "high"


class TestSubmit:
    """Tests for job submission."""

    @pytest.mark.asyncio
    async def test_submit_returns_result_id(self, context):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, json={"result": "task-abc"})

        client = make_client(handler)
        task_id = await client.submit(TaskKind.TEXT_TO_3D, "a red dragon", GenerationConfig(), context)

        assert task_id == "task-abc"
        assert seen["path"] == "/v2/text-to-3d"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["prompt"] == "a red dragon"

    @pytest.mark.asyncio
    async def test_submit_accepts_id_field(self, context):
        client = make_client(lambda request: httpx.Response(200, json={"id": "task-xyz"}))

        task_id = await client.submit(
            TaskKind.IMAGE_TO_3D, "https://images/a.png", GenerationConfig(), context
        )

        assert task_id == "task-xyz"

    @pytest.mark.asyncio
    async def test_image_jobs_use_image_endpoint(self, context):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"result": "t"})

        await make_client(handler).submit(
            TaskKind.IMAGE_TO_3D, "https://images/a.png", GenerationConfig(), context
        )

        assert paths == ["/v1/image-to-3d"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [402, 429])
    async def test_limit_statuses_raise_quota_error(self, context, status):
        client = make_client(lambda request: httpx.Response(status, json={"message": "no"}))

        with pytest.raises(QuotaExceededError) as exc_info:
            await client.submit(TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context)

        assert exc_info.value.status_code == status
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_limit_message_raises_quota_error(self, context):
        client = make_client(
            lambda request: httpx.Response(400, json={"message": "Monthly limit reached"})
        )

        with pytest.raises(QuotaExceededError):
            await client.submit(TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context)

    @pytest.mark.asyncio
    async def test_input_limit_rejection_is_not_a_quota_error(self, context):
        """A validation message mentioning a limit is an ordinary rejection."""
        client = make_client(
            lambda request: httpx.Response(
                400, json={"message": "Prompt exceeds the 600 character limit"}
            )
        )

        with pytest.raises(TerminalError) as exc_info:
            await client.submit(TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context)

        assert not isinstance(exc_info.value, QuotaExceededError)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["Insufficient credits", "Monthly quota used up"])
    async def test_quota_messages_raise_quota_error(self, context, message):
        client = make_client(lambda request: httpx.Response(400, json={"message": message}))

        with pytest.raises(QuotaExceededError):
            await client.submit(TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context)

    @pytest.mark.asyncio
    async def test_server_error_raises_transient(self, context):
        client = make_client(lambda request: httpx.Response(503))

        with pytest.raises(TransientError) as exc_info:
            await client.submit(TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_network_error_raises_transient(self, context):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientError):
            await make_client(handler).submit(
                TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context
            )

    @pytest.mark.asyncio
    async def test_other_rejection_stays_terminal(self, context):
        client = make_client(lambda request: httpx.Response(401, json={"message": "bad key"}))

        with pytest.raises(TerminalError) as exc_info:
            await client.submit(TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context)

        assert not isinstance(exc_info.value, QuotaExceededError)

    @pytest.mark.asyncio
    async def test_submit_is_not_resent_after_read_timeout(self, context):
        """The vendor may already have created the job, so a slow answer is not retried."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"result": "task-2"})

        with pytest.raises(TransientError):
            await make_client(handler, submit_attempts=2).submit(
                TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context
            )

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_submit_is_retried_when_connection_failed(self, context):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"result": "task-2"})

        task_id = await make_client(handler, submit_attempts=2).submit(
            TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context
        )

        assert task_id == "task-2"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_missing_task_id_is_transient(self, context):
        client = make_client(lambda request: httpx.Response(200, json={}))

        with pytest.raises(TransientError):
            await client.submit(TaskKind.TEXT_TO_3D, "a dragon", GenerationConfig(), context)


class TestGetStatus:
    """Tests for status fetches."""

    @pytest.mark.asyncio
    async def test_normalizes_status_payload(self, context):
        def handler(request):
            assert request.url.path == "/v2/text-to-3d/task-abc"
            return httpx.Response(
                200,
                json={
                    "status": "SUCCEEDED",
                    "progress": 100,
                    "model_urls": {"glb": "https://vendor/x.glb"},
                    "thumbnail_url": "https://vendor/x.png",
                },
            )

        status = await make_client(handler).get_status(TaskKind.TEXT_TO_3D, "task-abc", context)

        assert status.status == TaskStatus.SUCCEEDED
        assert status.raw_status == "SUCCEEDED"
        assert status.model_url == "https://vendor/x.glb"
        assert status.thumbnail_url == "https://vendor/x.png"

    @pytest.mark.asyncio
    async def test_status_is_single_shot(self, context):
        """Status calls never retry; the poller owns the budget."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(TransientError):
            await make_client(handler).get_status(TaskKind.TEXT_TO_3D, "task-abc", context)

        assert len(calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>502 from proxy</html>"),
            httpx.Response(200, json=["SUCCEEDED"]),
            httpx.Response(200, json={"status": "SUCCEEDED", "model_url": {"glb": 1}}),
        ],
    )
    async def test_unreadable_status_body_is_transient(self, context, response):
        client = make_client(lambda request: response)

        with pytest.raises(TransientError) as exc_info:
            await client.get_status(TaskKind.TEXT_TO_3D, "task-abc", context)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unknown_task_raises_not_found(self, context):
        client = make_client(lambda request: httpx.Response(404))

        with pytest.raises(TaskNotFoundError):
            await client.get_status(TaskKind.IMAGE_TO_3D, "missing", context)


class TestVendorStatusPayload:
    """Tests for VendorStatus.from_payload."""

    def test_obj_fallback(self):
        status = VendorStatus.from_payload(
            "t", {"status": "completed", "model_urls": {"obj": "https://vendor/x.obj"}}
        )

        assert status.model_url == "https://vendor/x.obj"

    def test_prefers_direct_model_url(self):
        status = VendorStatus.from_payload(
            "t",
            {"status": "SUCCEEDED", "model_url": "https://a.glb", "model_urls": {"glb": "https://b.glb"}},
        )

        assert status.model_url == "https://a.glb"

    def test_task_error_message(self):
        status = VendorStatus.from_payload(
            "t", {"status": "FAILED", "task_error": {"message": "Content rejected"}}
        )

        assert status.status == TaskStatus.FAILED
        assert status.error_message == "Content rejected"

    def test_progress_is_clamped_and_tolerant(self):
        assert VendorStatus.from_payload("t", {"status": "IN_PROGRESS", "progress": 150}).progress == 100
        assert VendorStatus.from_payload("t", {"status": "IN_PROGRESS", "progress": "n/a"}).progress == 0
        assert VendorStatus.from_payload("t", {"status": "IN_PROGRESS"}).progress == 0

    def test_tolerates_odd_nested_fields(self):
        status = VendorStatus.from_payload(
            "t", {"status": "FAILED", "model_urls": ["x"], "task_error": "boom"}
        )

        assert status.model_url is None
        assert status.error_message == "boom"

    def test_empty_model_url_is_none(self):
        status = VendorStatus.from_payload("t", {"status": "SUCCEEDED", "model_url": ""})

        assert status.model_url is None
