import asyncio

from voter_portal.celery import celery
from voter_portal.services.notification_service import WhatsAppService
from voter_portal.utils.errors import NotificationError
from voter_portal.utils.logging import get_logger

MAX_SEND_RETRIES = 3
BASE_RETRY_DELAY_SECONDS = 2


@celery.task(bind=True, max_retries=MAX_SEND_RETRIES)
def send_whatsapp_message_task(
    self, request_id: str, phone: str, message: str, kind: str
):
    """
    Celery task to deliver one WhatsApp message.

    Retries with exponential backoff (2s, 4s, 8s) when the provider call fails;
    after the last attempt the failure is logged and reported in the result.

    Args:
        request_id: The request ID from the original HTTP request
        phone: Recipient phone number, local or international format
        message: Message body
        kind: Template name, used for logging only
    """
    logger = get_logger().bind(request_id=request_id)

    try:
        result = asyncio.run(_async_send_whatsapp_message(phone, message))
    except NotificationError as e:
        if e.error_code == "INVALID_PHONE":
            logger.warning(f"Skipping {kind} notification: {e.message}")
            return {"success": False, "error": e.message, "request_id": request_id}

        if self.request.retries < self.max_retries:
            countdown = BASE_RETRY_DELAY_SECONDS * (2**self.request.retries)
            logger.warning(
                f"{kind} notification failed (attempt {self.request.retries + 1}), "
                f"retrying in {countdown}s: {e.message}"
            )
            raise self.retry(exc=e, countdown=countdown)

        logger.error(f"{kind} notification failed after retries: {e.message}")
        return {"success": False, "error": e.message, "request_id": request_id}

    logger.info(f"{kind} notification sent to {result.to}")
    return {
        "success": True,
        "kind": kind,
        "message_sid": result.message_sid,
        "mock": result.mock,
        "request_id": request_id,
    }


async def _async_send_whatsapp_message(phone: str, message: str):
    return await WhatsAppService().send_message(phone, message)
