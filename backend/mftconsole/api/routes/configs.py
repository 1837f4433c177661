from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse, Response

from mftconsole.api.deps import get_current_user, is_htmx, render
from mftconsole.models.transfer_config import PROVIDER_TYPES, TransferConfig
from mftconsole.models.user import User
from mftconsole.services import config_store, connection_tester
from mftconsole.services.errors import (
    ConfigInUseError,
    FormValidationError,
    NotFoundError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/configs", tags=["configs"])

_SECRET_FIELDS = {"source_password", "source_secret_key", "dest_password", "dest_secret_key"}


def _form_page(
    request: Request,
    *,
    values: dict[str, Any],
    config_id: int | None = None,
    errors: dict[str, str] | None = None,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    return render(
        request,
        "configs/form.html",
        {
            "values": values,
            "config_id": config_id,
            "errors": errors or {},
            "provider_types": PROVIDER_TYPES,
        },
        status_code=status_code,
    )


def _submitted_values(form: Any) -> dict[str, Any]:
    values = {k: v for k, v in form.items() if k not in _SECRET_FIELDS}
    for key in config_store.BOOL_FIELDS:
        values[key] = key in form
    return values


def _load_for_user(config_id: int, user: User, action: str) -> TransferConfig:
    try:
        return config_store.get_config_for_user(config_id, user, action)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.get("")
async def list_configs(request: Request, user: User = Depends(get_current_user)) -> Response:
    return render(request, "configs/list.html", {"configs": config_store.list_configs(user)})


@router.get("/new")
async def new_config(request: Request, user: User = Depends(get_current_user)) -> Response:
    defaults = config_store.TransferConfigInput.model_construct().model_dump()
    defaults.update({"source_type": "local", "destination_type": "local"})
    return _form_page(request, values=defaults)


@router.post("")
async def create_config(request: Request, user: User = Depends(get_current_user)) -> Response:
    form = await request.form()
    try:
        data = config_store.TransferConfigInput.from_form(form)
    except FormValidationError as exc:
        return _form_page(
            request,
            values=_submitted_values(form),
            errors=exc.errors,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    config_store.create_config(data, user)
    return RedirectResponse("/configs", status_code=status.HTTP_303_SEE_OTHER)


# Registered before /{config_id} so the literal path wins.
@router.post("/test-connection")
async def test_connection(request: Request, user: User = Depends(get_current_user)) -> Response:
    form = await request.form()
    side = str(form.get("providerType") or "")
    try:
        endpoint = config_store.endpoint_from_form(form, side)
    except ValueError:
        result = connection_tester.ConnectionTestResult(False, "Invalid provider type specified")
    else:
        result = await run_in_threadpool(connection_tester.run_connection_test, endpoint, side)

    logger.info("Connection test of %s by user %s: success=%s", side or "-", user.id, result.success)
    toast = {"showToast": {"message": result.message, "type": "success" if result.success else "error"}}
    return Response(status_code=status.HTTP_200_OK, headers={"HX-Trigger": json.dumps(toast)})


@router.get("/{config_id}")
async def edit_config(request: Request, config_id: int, user: User = Depends(get_current_user)) -> Response:
    config = _load_for_user(config_id, user, "edit")
    return _form_page(request, values=config_store.form_values(config), config_id=config.id)


@router.post("/{config_id}")
async def update_config(request: Request, config_id: int, user: User = Depends(get_current_user)) -> Response:
    _load_for_user(config_id, user, "edit")
    form = await request.form()
    try:
        data = config_store.TransferConfigInput.from_form(form)
    except FormValidationError as exc:
        return _form_page(
            request,
            values=_submitted_values(form),
            config_id=config_id,
            errors=exc.errors,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    config_store.update_config(config_id, data, user)
    return RedirectResponse("/configs", status_code=status.HTTP_303_SEE_OTHER)


@router.delete("/{config_id}")
async def delete_config(config_id: int, user: User = Depends(get_current_user)) -> JSONResponse:
    try:
        config_store.delete_config(config_id, user)
    except NotFoundError:
        return JSONResponse({"error": "Config not found"}, status_code=status.HTTP_404_NOT_FOUND)
    except PermissionDeniedError:
        return JSONResponse(
            {"error": "You do not have permission to delete this config"},
            status_code=status.HTTP_403_FORBIDDEN,
        )
    except ConfigInUseError as exc:
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)
    return JSONResponse({"message": "Config deleted successfully"})


@router.post("/{config_id}/duplicate")
async def duplicate_config(request: Request, config_id: int, user: User = Depends(get_current_user)) -> Response:
    try:
        config_store.duplicate_config(config_id, user)
    except NotFoundError:
        return JSONResponse({"error": "Config not found"}, status_code=status.HTTP_404_NOT_FOUND)
    except PermissionDeniedError:
        return JSONResponse(
            {"error": "You do not have permission to duplicate this config"},
            status_code=status.HTTP_403_FORBIDDEN,
        )

    if is_htmx(request):
        return JSONResponse({"message": "Config duplicated successfully"}, headers={"HX-Refresh": "true"})
    return RedirectResponse("/configs", status_code=status.HTTP_303_SEE_OTHER)
