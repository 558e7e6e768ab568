"""
api/routes/v1/admin.py -- Administrative account management.

Routes (all require the admin role):
  GET  /api/v1/admin/users                     -- list, ?status=active|inactive|suspended
  POST /api/v1/admin/users/{id}/suspend        -- body: {"reason": "..."}
  POST /api/v1/admin/users/{id}/unsuspend
  POST /api/v1/admin/users/{id}/activate
  POST /api/v1/admin/users/{id}/deactivate
  POST /api/v1/admin/inactivation-sweep        -- body: {"dry_run": bool}

suspend and deactivate revoke every session of the target account; the
sweep does not.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import failure_response
from api.models import AccountListResponse, AccountResponse, AccountSummary, SuspendRequest, SweepRequest, SweepResponse
from auth.admin import AccountAdminService
from auth.dependencies import require_admin
from auth.inactivation import InactivationSweep
from auth.models import Account
from auth.results import Outcome

router = APIRouter()


class StatusFilter(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


def _account_result(outcome: Outcome[Account]) -> JSONResponse:
    if not outcome.ok:
        return failure_response(outcome)
    return JSONResponse(
        content=AccountResponse(message=outcome.message, user=AccountSummary.from_account(outcome.value)).model_dump()
    )


@router.get("/admin/users", response_model=AccountListResponse)
def list_users(
    request: Request,
    status: Optional[StatusFilter] = None,
    admin: Account = Depends(require_admin),
) -> AccountListResponse:
    service: AccountAdminService = request.app.state.admin_service
    accounts = service.list_accounts(status.value if status else None)
    return AccountListResponse(
        users=[AccountSummary.from_account(a) for a in accounts],
        total=len(accounts),
        counts=service.stats(),
    )


@router.post("/admin/users/{account_id}/suspend", response_model=AccountResponse)
def suspend_user(
    request: Request,
    account_id: int,
    body: Optional[SuspendRequest] = None,
    admin: Account = Depends(require_admin),
) -> JSONResponse:
    service: AccountAdminService = request.app.state.admin_service
    reason = body.reason if body is not None else None
    return _account_result(service.suspend(account_id, actor=admin, reason=reason))


@router.post("/admin/users/{account_id}/unsuspend", response_model=AccountResponse)
def unsuspend_user(request: Request, account_id: int, admin: Account = Depends(require_admin)) -> JSONResponse:
    service: AccountAdminService = request.app.state.admin_service
    return _account_result(service.unsuspend(account_id, actor=admin))


@router.post("/admin/users/{account_id}/activate", response_model=AccountResponse)
def activate_user(request: Request, account_id: int, admin: Account = Depends(require_admin)) -> JSONResponse:
    service: AccountAdminService = request.app.state.admin_service
    return _account_result(service.activate(account_id, actor=admin))


@router.post("/admin/users/{account_id}/deactivate", response_model=AccountResponse)
def deactivate_user(request: Request, account_id: int, admin: Account = Depends(require_admin)) -> JSONResponse:
    service: AccountAdminService = request.app.state.admin_service
    return _account_result(service.deactivate(account_id, actor=admin))


@router.post("/admin/inactivation-sweep", response_model=SweepResponse)
def run_sweep(
    request: Request,
    body: Optional[SweepRequest] = None,
    admin: Account = Depends(require_admin),
) -> SweepResponse:
    sweep: InactivationSweep = request.app.state.sweep
    report = sweep.run(dry_run=body.dry_run if body is not None else False)
    return SweepResponse(
        total_found=report.total_found,
        marked_inactive=report.marked_inactive,
        dry_run=report.dry_run,
        errors=report.errors,
    )
