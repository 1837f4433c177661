from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse, Response

from mftconsole.api.deps import alert_fragment, get_current_user, is_htmx, render
from mftconsole.models.user import User
from mftconsole.services import two_factor, users
from mftconsole.services.errors import FormValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

INVALID_CODE = "Invalid verification code. Please try again."
INVALID_BACKUP_CODE = "Invalid backup code. Please try again."


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


def _pending_user(request: Request) -> User | None:
    user_id = request.session.get("pending_user_id")
    if not user_id:
        return None
    user = users.get_user(int(user_id))
    if not user or not user.active or not user.two_factor_enabled:
        request.session.pop("pending_user_id", None)
        return None
    return user


def _complete_login(request: Request, user: User) -> RedirectResponse:
    request.session.clear()
    request.session["user_id"] = user.id
    logger.info("User %s signed in", user.id)
    return _redirect("/dashboard")


@router.get("/")
async def index(request: Request) -> RedirectResponse:
    return _redirect("/dashboard" if request.session.get("user_id") else "/login")


@router.get("/login")
async def login_page(request: Request) -> Response:
    if request.session.get("user_id"):
        return _redirect("/dashboard")
    return render(request, "login.html", {"error": "", "email": ""})


@router.post("/login")
async def login(request: Request, email: str = Form(""), password: str = Form("")) -> Response:
    user = users.authenticate(email, password)
    if not user:
        logger.info("Failed sign-in for %s", email.strip().lower())
        return render(
            request,
            "login.html",
            {"error": "Invalid email or password", "email": email},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    if user.two_factor_enabled:
        request.session.clear()
        request.session["pending_user_id"] = user.id
        return _redirect("/login/verify")
    return _complete_login(request, user)


@router.post("/logout")
async def logout(request: Request) -> RedirectResponse:
    request.session.clear()
    return _redirect("/login")


# -------------------------
# Second login step
# -------------------------

@router.get("/login/verify")
async def verify_page(request: Request) -> Response:
    if not _pending_user(request):
        return _redirect("/login")
    return render(request, "two_factor/verify.html", {"error": ""})


@router.post("/login/verify")
async def verify_login(request: Request, code: str = Form("")) -> Response:
    user = _pending_user(request)
    if not user:
        return _redirect("/login")

    if two_factor.verify_code(user.two_factor_secret, code):
        return _complete_login(request, user)

    # A backup code typed into the TOTP form is accepted too.
    if two_factor.validate_backup_code(code, user.backup_codes):
        users.set_backup_codes(user.id, two_factor.remove_backup_code(code, user.backup_codes))
        logger.info("User %s signed in with a backup code", user.id)
        return _complete_login(request, user)

    return render(
        request,
        "two_factor/verify.html",
        {"error": INVALID_CODE},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@router.get("/login/backup-code")
async def backup_code_page(request: Request) -> Response:
    if not _pending_user(request):
        return _redirect("/login")
    return render(request, "two_factor/backup_code.html", {"error": ""})


@router.post("/login/backup-code")
async def verify_backup_code(request: Request, code: str = Form("")) -> Response:
    user = _pending_user(request)
    if not user:
        return _redirect("/login")

    if not two_factor.validate_backup_code(code, user.backup_codes):
        return render(
            request,
            "two_factor/backup_code.html",
            {"error": INVALID_BACKUP_CODE},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    users.set_backup_codes(user.id, two_factor.remove_backup_code(code, user.backup_codes))
    logger.info("User %s signed in with a backup code", user.id)
    return _complete_login(request, user)


# -------------------------
# Password change
# -------------------------

@router.post("/change-password")
async def change_password(
    request: Request,
    current_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
    user: User = Depends(get_current_user),
) -> Response:
    try:
        users.change_password(user, current_password, new_password, confirm_password)
    except FormValidationError as exc:
        message = next(iter(exc.errors.values()))
        if is_htmx(request):
            return alert_fragment(message)
        return render(
            request,
            "profile.html",
            {"themes": users.THEMES, "password_error": message},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    if is_htmx(request):
        return alert_fragment("Password updated successfully!", "success", status.HTTP_200_OK)
    return _redirect("/profile?message=Password+updated+successfully")
