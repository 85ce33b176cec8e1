from typing import Literal, Optional

from pydantic import Field, model_validator
from .camel_base_model import CamelCaseBaseModel as BaseModel
from .user_schemas import EMAIL_PATTERN, UserRecord


class LoginRequest(BaseModel):
    """
    Login request schema.

    ``action="register"`` reuses the same endpoint for volunteer self-registration,
    in which case ``email`` is required and the profile fields are stored.
    """

    login_field: str = Field(..., min_length=1, description="Email or phone number")
    password: str = Field(..., min_length=1, max_length=72, description="Password")
    login_type: Literal["email", "phone"] = Field("email", description="Login field type")
    action: Literal["login", "register"] = Field("login", description="Action to perform")

    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, description="Email for registration")
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    district: Optional[str] = Field(None, max_length=255)
    taluka: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def check_registration_fields(self):
        if self.action == "register" and not self.email:
            raise ValueError("Email is required for registration")
        return self


class LoginResult(BaseModel):
    """Token plus the authenticated user"""

    token: str = Field(..., description="Bearer token")
    user: UserRecord = Field(..., description="Authenticated user")


class TeamSignupRequest(BaseModel):
    """Team member signup; ``padvidhar`` (graduate constituency) is stored as taluka"""

    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., pattern=r"^[0-9]{10}$", description="10-digit phone number")
    password: str = Field(..., min_length=4, max_length=72)
    padvidhar: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1)
    district: str = Field(..., min_length=1, max_length=255)
    pin: str = Field(..., pattern=r"^[0-9]{6}$", description="6-digit PIN code")
