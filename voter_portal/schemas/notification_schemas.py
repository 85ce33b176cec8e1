from typing import Any, Dict, Literal, Optional
from pydantic import Field

from voter_portal.schemas.camel_base_model import CamelCaseBaseModel as BaseModel

NotificationKind = Literal["submission_confirmation", "welcome", "team_welcome"]


class NotificationEvent(BaseModel):
    """A WhatsApp message to send once the write that produced it has committed."""

    kind: NotificationKind = Field(..., description="Message template that was used")
    phone: str = Field(..., description="Recipient phone number")
    message: str = Field(..., description="Rendered message body")
    reference_id: Optional[str] = Field(
        None, description="Submission or user the message is about"
    )


class WhatsAppSendResult(BaseModel):
    success: bool = Field(..., description="Whether the provider accepted the message")
    message_sid: Optional[str] = Field(None, description="Provider message id")
    to: str = Field(..., description="Formatted recipient address")
    mock: bool = Field(False, description="True when sent without provider credentials")
    provider_response: Optional[Dict[str, Any]] = Field(
        None, description="Raw provider payload"
    )
