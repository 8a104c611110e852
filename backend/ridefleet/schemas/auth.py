from typing import Any, Literal

from pydantic import BaseModel, Field


class EnvelopeOut(BaseModel):
    success: bool = True
    message: str
    data: Any = None


class PhoneIn(BaseModel):
    phone_number: str = Field(..., min_length=7, max_length=20, examples=["+15550000001"])


class PhoneVerifyIn(PhoneIn):
    otp: str = Field(..., min_length=4, max_length=8)


class EmailIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, examples=["rider@example.com"])


class EmailVerifyIn(EmailIn):
    otp: str = Field(..., min_length=4, max_length=8)


class OtpVerifyIn(BaseModel):
    channel: Literal["phone", "email"]
    identifier: str = Field(..., min_length=3, max_length=254)
    otp: str = Field(..., min_length=4, max_length=8)


class OAuthLoginIn(BaseModel):
    provider: Literal["google", "apple"]
    access_token: str = Field(..., min_length=10)


class PasswordLoginIn(EmailIn):
    password: str = Field(..., min_length=1, max_length=128)


class ForgotPasswordIn(EmailIn):
    pass


class VerifyForgotPasswordOtpIn(EmailVerifyIn):
    pass


class ResetPasswordIn(EmailVerifyIn):
    new_password: str = Field(..., min_length=8, max_length=128)


class RefreshIn(BaseModel):
    refresh_token: str = Field(..., min_length=1)
