from fastapi import APIRouter, Depends

from ridefleet.api.deps import (
    get_auth_service,
    get_current_user_id,
    optional_app_type,
    require_app_type,
)
from ridefleet.modules.auth.service import AuthService
from ridefleet.schemas.auth import (
    EmailIn,
    EmailVerifyIn,
    EnvelopeOut,
    ForgotPasswordIn,
    OAuthLoginIn,
    OtpVerifyIn,
    PasswordLoginIn,
    PhoneIn,
    PhoneVerifyIn,
    RefreshIn,
    ResetPasswordIn,
    VerifyForgotPasswordOtpIn,
)

router = APIRouter()


@router.get("/me", response_model=EnvelopeOut)
def me(
    user_id: str = Depends(get_current_user_id),
    app_type: str = Depends(require_app_type),
    svc: AuthService = Depends(get_auth_service),
):
    return svc.get_me(user_id, app_type)


@router.post("/phone/signup", response_model=EnvelopeOut)
def phone_signup(payload: PhoneIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)):
    return svc.register_with_phone(payload.phone_number, app_type)


@router.post("/phone/verify", response_model=EnvelopeOut)
def phone_verify(
    payload: PhoneVerifyIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)
):
    return svc.login_with_phone(payload.phone_number, payload.otp, app_type)


@router.post("/phone/resend-otp", response_model=EnvelopeOut)
def phone_resend_otp(payload: PhoneIn, svc: AuthService = Depends(get_auth_service)):
    return svc.send_otp("phone", payload.phone_number)


@router.post("/email/signup", response_model=EnvelopeOut)
def email_signup(payload: EmailIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)):
    return svc.register_with_email(payload.email, app_type)


@router.post("/email/verify", response_model=EnvelopeOut)
def email_verify(
    payload: EmailVerifyIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)
):
    return svc.login_with_email(payload.email, payload.otp, app_type)


@router.post("/email/resend-otp", response_model=EnvelopeOut)
def email_resend_otp(payload: EmailIn, svc: AuthService = Depends(get_auth_service)):
    return svc.send_otp("email", payload.email)


@router.post("/otp/verify", response_model=EnvelopeOut)
def otp_verify(payload: OtpVerifyIn, svc: AuthService = Depends(get_auth_service)):
    return svc.verify_otp(payload.channel, payload.identifier, payload.otp)


@router.post("/oauth/login", response_model=EnvelopeOut)
def oauth_login(
    payload: OAuthLoginIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)
):
    return svc.login_with_oauth(payload.provider, payload.access_token, app_type)


@router.post("/password/login", response_model=EnvelopeOut)
def password_login(
    payload: PasswordLoginIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)
):
    return svc.login_with_password(payload.email, payload.password, app_type)


@router.post("/forgot-password", response_model=EnvelopeOut)
def forgot_password(
    payload: ForgotPasswordIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)
):
    return svc.send_forgot_password_otp(payload.email, app_type)


@router.post("/verify-forgot-password-otp", response_model=EnvelopeOut)
def verify_forgot_password_otp(
    payload: VerifyForgotPasswordOtpIn,
    app_type: str = Depends(require_app_type),
    svc: AuthService = Depends(get_auth_service),
):
    return svc.verify_forgot_password_otp(payload.email, payload.otp, app_type)


@router.post("/reset-password", response_model=EnvelopeOut)
def reset_password(
    payload: ResetPasswordIn, app_type: str = Depends(require_app_type), svc: AuthService = Depends(get_auth_service)
):
    return svc.reset_password(payload.email, payload.otp, payload.new_password, app_type)


@router.post("/refresh-token", response_model=EnvelopeOut)
def refresh_token(
    payload: RefreshIn, app_type: str | None = Depends(optional_app_type), svc: AuthService = Depends(get_auth_service)
):
    return svc.refresh_token(payload.refresh_token, app_type)


@router.post("/logout", response_model=EnvelopeOut)
def logout(user_id: str = Depends(get_current_user_id), svc: AuthService = Depends(get_auth_service)):
    return svc.logout(user_id)
