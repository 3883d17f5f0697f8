"""
api/routes/vault.py -- Owner-scoped CRUD for saved passwords and cards.

Routes (each path supports GET, POST, PUT, DELETE):
  /api/password          -- browser, session cookie
  /api/card              -- browser, session cookie
  /api/mobile-passwords  -- mobile app, Authorization: Bearer
  /api/mobile-cards      -- mobile app, Authorization: Bearer

  GET    ?countOnly=true -> {"success": true, "count": n}; no decryption
  GET                    -> owner's records, newest first, decrypted
  POST   JSON body       -> 201 with the created record
  PUT    JSON body + id  -> updated record, 404 if not found or not owned
  DELETE ?id=<id>        -> {"success": true}, 404 if not found or not owned

The browser and mobile variants differ only in how the caller is resolved
(and the browser password list cap), so each resource registers its four
handlers through one function per resource, called once per variant.

IDOR guard: the owner is always the resolved Identity, passed explicitly into
VaultService. A record that exists but belongs to someone else produces the
same 404 as a record that does not exist.

An ?email= query parameter on GET or DELETE is answered with 400 bad_request
so a client that tries to select another owner learns that it cannot.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    CardEntryCreate,
    CardEntryOut,
    CardEntryResponse,
    CardEntryUpdate,
    CardListResponse,
    CountResponse,
    PasswordEntryCreate,
    PasswordEntryOut,
    PasswordEntryResponse,
    PasswordEntryUpdate,
    PasswordListResponse,
    SuccessResponse,
)
from auth.dependencies import require_bearer_identity, require_session_identity
from auth.models import Identity
from vault.models import CardFields, PasswordFields
from vault.service import BROWSER_PASSWORD_LIMIT, VaultService

logger = logging.getLogger("nopass.api.vault")

router = APIRouter()


def _vault(request: Request) -> VaultService:
    return request.app.state.vault


def _missing_id(kind: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "bad_request", "message": f"Missing {kind} ID"})


def _not_found(kind: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"{kind.capitalize()} not found"})


def _reject_owner_param(request: Request) -> None:
    """Refuse an owner selector instead of silently ignoring it."""
    if "email" in request.query_params:
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_request", "message": "email is not accepted; records belong to the caller"},
        )



# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def _password_fields(body: PasswordEntryCreate) -> PasswordFields:
    return PasswordFields(website=body.website, username=body.username, password=body.password, notes=body.notes)


def _register_password_routes(path: str, require: Callable[..., Identity], list_limit: Optional[int]) -> None:
    @router.get(path, response_model=None, name=f"list_{path.strip('/')}")
    def list_passwords(
        request: Request,
        count_only: bool = Query(False, alias="countOnly"),
        identity: Identity = Depends(require),
    ) -> PasswordListResponse | CountResponse:
        _reject_owner_param(request)
        vault = _vault(request)
        if count_only:
            return CountResponse(count=vault.count_passwords(identity))
        entries = vault.list_passwords(identity, limit=list_limit)
        return PasswordListResponse(data=[PasswordEntryOut(**e) for e in entries])

    @router.post(path, status_code=201, response_model=PasswordEntryResponse, name=f"create_{path.strip('/')}")
    def create_password(
        request: Request,
        body: PasswordEntryCreate,
        identity: Identity = Depends(require),
    ) -> JSONResponse:
        entry = _vault(request).add_password(identity, _password_fields(body))
        return JSONResponse(
            status_code=201,
            content=PasswordEntryResponse(data=PasswordEntryOut(**entry)).model_dump(),
        )

    @router.put(path, response_model=PasswordEntryResponse, name=f"update_{path.strip('/')}")
    def update_password(
        request: Request,
        body: PasswordEntryUpdate,
        identity: Identity = Depends(require),
    ) -> PasswordEntryResponse:
        if body.id is None:
            raise _missing_id("password")
        entry = _vault(request).update_password(identity, body.id, _password_fields(body))
        if entry is None:
            raise _not_found("password")
        return PasswordEntryResponse(data=PasswordEntryOut(**entry))

    @router.delete(path, response_model=SuccessResponse, name=f"delete_{path.strip('/')}")
    def delete_password(
        request: Request,
        id: Optional[int] = Query(None),  # noqa: A002 -- public query parameter name
        identity: Identity = Depends(require),
    ) -> SuccessResponse:
        _reject_owner_param(request)
        if id is None:
            raise _missing_id("password")
        if not _vault(request).delete_password(identity, id):
            raise _not_found("password")
        logger.info("Password entry %s deleted", id)
        return SuccessResponse()


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


def _card_fields(body: CardEntryCreate) -> CardFields:
    return CardFields(
        cardholder_name=body.cardholder_name,
        card_number=body.card_number,
        expiry_date=body.expiry_date,
        cvv=body.cvv,
        notes=body.notes,
    )


def _register_card_routes(path: str, require: Callable[..., Identity]) -> None:
    @router.get(path, response_model=None, name=f"list_{path.strip('/')}")
    def list_cards(
        request: Request,
        count_only: bool = Query(False, alias="countOnly"),
        identity: Identity = Depends(require),
    ) -> CardListResponse | CountResponse:
        _reject_owner_param(request)
        vault = _vault(request)
        if count_only:
            return CountResponse(count=vault.count_cards(identity))
        return CardListResponse(data=[CardEntryOut(**e) for e in vault.list_cards(identity)])

    @router.post(path, status_code=201, response_model=CardEntryResponse, name=f"create_{path.strip('/')}")
    def create_card(
        request: Request,
        body: CardEntryCreate,
        identity: Identity = Depends(require),
    ) -> JSONResponse:
        entry = _vault(request).add_card(identity, _card_fields(body))
        return JSONResponse(
            status_code=201,
            content=CardEntryResponse(data=CardEntryOut(**entry)).model_dump(),
        )

    @router.put(path, response_model=CardEntryResponse, name=f"update_{path.strip('/')}")
    def update_card(
        request: Request,
        body: CardEntryUpdate,
        identity: Identity = Depends(require),
    ) -> CardEntryResponse:
        if body.id is None:
            raise _missing_id("card")
        entry = _vault(request).update_card(identity, body.id, _card_fields(body))
        if entry is None:
            raise _not_found("card")
        return CardEntryResponse(data=CardEntryOut(**entry))

    @router.delete(path, response_model=SuccessResponse, name=f"delete_{path.strip('/')}")
    def delete_card(
        request: Request,
        id: Optional[int] = Query(None),  # noqa: A002
        identity: Identity = Depends(require),
    ) -> SuccessResponse:
        _reject_owner_param(request)
        if id is None:
            raise _missing_id("card")
        if not _vault(request).delete_card(identity, id):
            raise _not_found("card")
        logger.info("Card entry %s deleted", id)
        return SuccessResponse()


# ---------------------------------------------------------------------------
# Route registration
# ---------------------------------------------------------------------------

_register_password_routes("/password", require_session_identity, list_limit=BROWSER_PASSWORD_LIMIT)
_register_password_routes("/mobile-passwords", require_bearer_identity, list_limit=None)
_register_card_routes("/card", require_session_identity)
_register_card_routes("/mobile-cards", require_bearer_identity)
