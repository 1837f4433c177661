from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from mftconsole.api.deps import alert_fragment, get_current_user, render
from mftconsole.models.user import User
from mftconsole.services import two_factor, users

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile/2fa", tags=["two-factor"])

# Session keys for a setup in progress and for freshly regenerated codes.
SETUP_SECRET = "2fa_setup_secret"
SETUP_CODES = "2fa_setup_backup_codes_hashed"
NEW_CODES = "2fa_new_backup_codes"

PLACEHOLDER_CODE = "[BACKUP CODE ALREADY GENERATED]"
REDACTED_CODE = "[REDACTED FOR SECURITY]"


def _setup_context(user: User, secret: str, codes: list[str], error: str = "") -> dict:
    uri = two_factor.provisioning_uri(secret, user.email)
    return {
        "secret": secret,
        "qr_code": two_factor.qr_code_data_uri(uri),
        "otpauth_uri": uri,
        "backup_codes": codes,
        "error": error,
    }


@router.get("/setup")
async def setup(request: Request, user: User = Depends(get_current_user)) -> Response:
    if user.two_factor_enabled:
        return RedirectResponse("/profile", status_code=status.HTTP_303_SEE_OTHER)

    secret = two_factor.generate_secret()
    plain_codes, hashed_codes = two_factor.generate_backup_codes()
    request.session[SETUP_SECRET] = secret
    request.session[SETUP_CODES] = hashed_codes
    return render(request, "two_factor/setup.html", _setup_context(user, secret, plain_codes))


@router.post("/verify")
async def verify_setup(request: Request, code: str = Form(""), user: User = Depends(get_current_user)) -> Response:
    secret = request.session.get(SETUP_SECRET)
    hashed_codes = request.session.get(SETUP_CODES)
    if not secret or not hashed_codes:
        return HTMLResponse("Setup session expired", status_code=status.HTTP_400_BAD_REQUEST)

    if not two_factor.verify_code(secret, code):
        placeholders = [PLACEHOLDER_CODE] * two_factor.BACKUP_CODE_COUNT
        context = _setup_context(user, secret, placeholders, "Invalid verification code. Please try again.")
        return render(request, "two_factor/setup.html", context, status_code=status.HTTP_400_BAD_REQUEST)

    users.enable_two_factor(user.id, secret, hashed_codes)
    request.session.pop(SETUP_SECRET, None)
    request.session.pop(SETUP_CODES, None)
    logger.info("Two-factor authentication enabled for user %s", user.id)
    return RedirectResponse("/profile?message=2FA+enabled+successfully", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/disable")
async def disable(current_password: str = Form(""), user: User = Depends(get_current_user)) -> HTMLResponse:
    if not current_password:
        return alert_fragment("Current password is required")
    if not users.check_password(user, current_password):
        return alert_fragment("Current password is incorrect")
    if not user.two_factor_enabled:
        return alert_fragment("Two-factor authentication is already disabled", kind="warning")

    users.disable_two_factor(user.id)
    logger.info("Two-factor authentication disabled for user %s", user.id)
    return alert_fragment(
        "Two-factor authentication has been disabled",
        "success",
        status.HTTP_200_OK,
        reload_after=1500,
    )


@router.get("/backup-codes")
async def backup_codes(request: Request, user: User = Depends(get_current_user)) -> Response:
    if not user.two_factor_enabled:
        return RedirectResponse("/profile", status_code=status.HTTP_303_SEE_OTHER)

    fresh = request.session.pop(NEW_CODES, None)
    if fresh:
        codes = list(fresh)
        message = (
            "New backup codes generated successfully. IMPORTANT: Save these codes now. "
            "You won't be able to see them again!"
        )
    elif user.backup_code_count:
        codes = [REDACTED_CODE] * user.backup_code_count
        message = (
            "For security, backup codes are not displayed after initial generation. "
            "Generate new codes to replace existing ones."
        )
    else:
        codes = []
        message = "You have no backup codes left. Generate new codes to keep a way back into your account."
    return render(request, "two_factor/backup_codes.html", {"backup_codes": codes, "success_message": message})


@router.post("/regenerate-codes")
async def regenerate_codes(request: Request, user: User = Depends(get_current_user)) -> Response:
    if not user.two_factor_enabled:
        return RedirectResponse("/profile", status_code=status.HTTP_303_SEE_OTHER)

    plain_codes, hashed_codes = two_factor.generate_backup_codes()
    users.set_backup_codes(user.id, hashed_codes)
    request.session[NEW_CODES] = plain_codes
    logger.info("Backup codes regenerated for user %s", user.id)
    return RedirectResponse("/profile/2fa/backup-codes", status_code=status.HTTP_303_SEE_OTHER)
