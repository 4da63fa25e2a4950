import httpx
import structlog
from typing import Optional

from jobrunner.jobs.models import Job
from jobrunner.jobs.registry import Processor

logger = structlog.get_logger()


class WebhookNotificationProcessor(Processor):
    """Deliver ``send_notification`` jobs by POSTing them to a webhook.

    The request body is ``{"job_id", "type", "tags", "payload"}``. A non-2xx
    response or a transport error raises, so the job goes through the
    normal retry schedule.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the webhook processor.

        Args:
            webhook_url: URL receiving the notifications
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport

        logger.info(
            "webhook_processor_initialized",
            has_webhook=bool(webhook_url),
            source="processor",
        )

    async def process(self, job: Job) -> dict:
        body = {
            "job_id": job.id,
            "type": job.type,
            "tags": job.tags or [],
            "payload": job.payload,
        }

        async with httpx.AsyncClient(transport=self.transport) as client:
            response = await client.post(
                self.webhook_url,
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()

        logger.info(
            "notification_sent",
            job_id=job.id,
            status_code=response.status_code,
            attempt=job.attempts,
            source="processor",
        )

        return {"status_code": response.status_code}

    async def on_failure(self, job: Job, error: Exception) -> None:
        logger.error(
            "notification_delivery_failed",
            job_id=job.id,
            attempts=job.attempts,
            error=str(error),
            source="processor",
        )
