import re
from typing import Iterable, List, Optional
from uuid import uuid4

import httpx
from starlette.concurrency import run_in_threadpool

from voter_portal.config.settings import settings
from voter_portal.schemas.notification_schemas import (
    NotificationEvent,
    WhatsAppSendResult,
)
from voter_portal.schemas.submission_schemas import SubmissionRecord
from voter_portal.schemas.user_schemas import UserRecord
from voter_portal.utils.context import get_request_id
from voter_portal.utils.errors import NotificationError
from voter_portal.utils.logging import get_logger

logger = get_logger()


class WhatsAppService:
    """Sends WhatsApp messages through the Twilio REST API.

    Without credentials the service runs in mock mode: messages are logged and
    reported as sent so that the rest of the flow behaves the same.
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = (
            settings.TWILIO_ACCOUNT_SID if account_sid is None else account_sid
        )
        self.auth_token = settings.TWILIO_AUTH_TOKEN if auth_token is None else auth_token
        self.from_number = (
            settings.TWILIO_WHATSAPP_NUMBER if from_number is None else from_number
        )
        self.base_url = base_url or settings.TWILIO_API_BASE_URL
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @staticmethod
    def format_phone_number(
        phone: str, country_code: Optional[str] = None
    ) -> str:
        """Normalize a local or international number to ``whatsapp:+<cc><number>``"""
        country_code = country_code or settings.WHATSAPP_COUNTRY_CODE
        digits = re.sub(r"\D", "", phone or "")
        if not digits:
            raise NotificationError("Phone number is empty", "INVALID_PHONE")

        digits = digits.lstrip("0")
        if len(digits) == 10:
            digits = f"{country_code}{digits}"
        elif not digits.startswith(country_code):
            raise NotificationError(
                f"Unsupported phone number format: {phone}", "INVALID_PHONE"
            )
        return f"whatsapp:+{digits}"

    def _sender(self) -> str:
        if self.from_number.startswith("whatsapp:"):
            return self.from_number
        return f"whatsapp:{self.from_number}"

    async def send_message(self, phone: str, body: str) -> WhatsAppSendResult:
        to = self.format_phone_number(phone)

        if not self.is_configured:
            logger.info(f"WhatsApp not configured, mock message to {to}")
            return WhatsAppSendResult(
                success=True, message_sid=f"MOCK_{uuid4().hex[:16]}", to=to, mock=True
            )

        url = f"{self.base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    url,
                    auth=(self.account_sid, self.auth_token),
                    data={"From": self._sender(), "To": to, "Body": body},
                    timeout=30.0,
                )
        except httpx.HTTPError as e:
            raise NotificationError(
                f"WhatsApp request failed: {type(e).__name__}", "WHATSAPP_UNREACHABLE"
            ) from e

        if response.status_code not in (200, 201):
            raise NotificationError(
                f"WhatsApp send failed: {response.status_code} - {response.text[:200]}",
                "WHATSAPP_SEND_FAILED",
            )

        payload = response.json()
        logger.info(f"WhatsApp message {payload.get('sid')} queued for {to}")
        return WhatsAppSendResult(
            success=True,
            message_sid=payload.get("sid"),
            to=to,
            provider_response=payload,
        )


def build_submission_confirmation(submission: SubmissionRecord) -> NotificationEvent:
    full_name = f"{submission.first_name} {submission.surname}"
    lines = [
        "Registration Successful!",
        "",
        f"Dear {full_name},",
        "",
        "Your voter registration has been submitted successfully.",
        "",
        "Registration Details:",
        f"- Registration ID: {submission.id}",
        f"- Name: {full_name}",
        f"- Mobile: {submission.mobile_number}",
    ]
    if submission.email:
        lines.append(f"- Email: {submission.email}")
    lines += [
        f"- District: {submission.district}",
        f"- Taluka: {submission.taluka}",
        "",
        "Your application is being processed.",
        "Contact us if you have any questions.",
    ]
    return NotificationEvent(
        kind="submission_confirmation",
        phone=submission.mobile_number,
        message="\n".join(lines),
        reference_id=submission.id,
    )


def build_welcome_message(user: UserRecord) -> Optional[NotificationEvent]:
    """Welcome message for a new team user, or None when there is no phone"""
    if not user.phone:
        return None

    lines = [
        "Welcome to the Voter Portal team!",
        "",
        f"Dear {user.first_name or 'Team Member'},",
        "",
        "Your account has been created.",
        "",
        "Account Details:",
        f"- Name: {user.full_name or user.email}",
        f"- Email: {user.email}",
        f"- Role: {user.role.value.upper()}",
        f"- Phone: {user.phone}",
    ]
    if user.district:
        lines.append(f"- District: {user.district}")
    if user.taluka:
        lines.append(f"- Taluka: {user.taluka}")
    lines += [
        "",
        "Log in with your email and the password you set.",
        "Contact an admin if you have any questions.",
    ]
    return NotificationEvent(
        kind="welcome",
        phone=user.phone,
        message="\n".join(lines),
        reference_id=str(user.id),
    )


def build_team_welcome_message(user: UserRecord) -> Optional[NotificationEvent]:
    if not user.phone:
        return None

    message = "\n".join(
        [
            f"Welcome {user.first_name or 'Team Member'}!",
            "",
            "Your team account is ready.",
            f"- Login phone: {user.phone}",
            f"- District: {user.district or '-'}",
            f"- Padvidhar: {user.taluka or '-'}",
            "",
            "Use your phone number and password to log in to the team portal.",
        ]
    )
    return NotificationEvent(
        kind="team_welcome",
        phone=user.phone,
        message=message,
        reference_id=str(user.id),
    )


class NotificationDispatcher:
    """Hands committed-write events to the background WhatsApp sender.

    Notifications are best effort: a broker outage is logged and never
    turns a successful write into a failed request.
    """

    def __init__(self, sender=None):
        if sender is None:
            from voter_portal.tasks.whatsapp_notification_sender import (
                send_whatsapp_message_task,
            )

            sender = send_whatsapp_message_task
        self.sender = sender

    async def dispatch(self, events: Iterable[NotificationEvent]) -> List[str]:
        """Queue every event; returns the kinds that were queued."""
        request_id = get_request_id() or "app"
        return await run_in_threadpool(self._queue, list(events), request_id)

    def _queue(self, events: List[NotificationEvent], request_id: str) -> List[str]:
        # Celery publishes synchronously and retries while the broker is down
        queued: List[str] = []
        for event in events:
            try:
                self.sender.delay(request_id, event.phone, event.message, event.kind)
                queued.append(event.kind)
            except Exception as e:
                logger.error(
                    f"Failed to queue {event.kind} notification "
                    f"for {event.reference_id}: {str(e)}"
                )
        return queued


def get_notification_dispatcher() -> NotificationDispatcher:
    """Dependency to get the notification dispatcher"""
    return NotificationDispatcher()
