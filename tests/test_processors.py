import json

import httpx
import pytest

from jobrunner.jobs import JobStatus, JobType, WebhookNotificationProcessor
from jobrunner.jobs.models import Job


def make_transport(status_code: int, requests: list) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json={"ok": status_code < 400})

    return httpx.MockTransport(handler)


async def test_posts_job_to_webhook():
    requests = []
    processor = WebhookNotificationProcessor(
        "https://hooks.example.com/notify", transport=make_transport(200, requests)
    )
    job = Job(
        id="job_1",
        type=JobType.SEND_NOTIFICATION.value,
        payload={"user_id": "u1", "message": "Your appointment is confirmed"},
        tags=["appointments"],
    )

    result = await processor.process(job)

    assert result == {"status_code": 200}
    assert len(requests) == 1
    assert requests[0].method == "POST"
    assert str(requests[0].url) == "https://hooks.example.com/notify"
    assert json.loads(requests[0].content) == {
        "job_id": "job_1",
        "type": "send_notification",
        "tags": ["appointments"],
        "payload": {"user_id": "u1", "message": "Your appointment is confirmed"},
    }


async def test_error_response_raises():
    processor = WebhookNotificationProcessor(
        "https://hooks.example.com/notify", transport=make_transport(503, [])
    )

    with pytest.raises(httpx.HTTPStatusError):
        await processor.process(Job(id="job_1", type="send_notification"))


async def test_failed_delivery_is_retried_then_failed(queue, clock):
    requests = []
    queue.register_processor(
        JobType.SEND_NOTIFICATION,
        WebhookNotificationProcessor(
            "https://hooks.example.com/notify", transport=make_transport(500, requests)
        ),
    )
    job_id = await queue.add_job(JobType.SEND_NOTIFICATION, {"message": "hi"}, max_attempts=2)

    await queue.process_job(await queue.claim_next())
    clock.advance(100)
    job = await queue.claim_next()
    await queue.process_job(job)

    assert job.id == job_id
    assert job.status == JobStatus.FAILED
    assert job.error.startswith("HTTPStatusError")
    assert len(requests) == 2
