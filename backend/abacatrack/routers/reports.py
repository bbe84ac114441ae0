"""Dashboard report router (cached, eventually consistent).

Endpoints:
    GET /api/reports/seedlings     Distribution totals and planting rate
    GET /api/reports/stock         Balances by status and resource kind
    GET /api/reports/withdrawals   Withdrawal totals, trailing window
    GET /api/reports/deliveries    Delivery pipeline and payment totals
    GET /api/reports/audit         Conservation audit findings (uncached)
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from abacatrack.auth.deps import Actor, Role, require_role
from abacatrack.routers.deps import get_db
from abacatrack.schemas.report import (
    AuditReport,
    DeliveryStats,
    SeedlingStats,
    StockStats,
    WithdrawalStats,
)
from abacatrack.services import reporting
from abacatrack.services.audit import run_conservation_audit, summarize
from abacatrack.utils.cache import cached

router = APIRouter()

_any_role = require_role(*Role)


@router.get("/seedlings", response_model=SeedlingStats)
@cached(prefix="reports")
async def seedling_report(
    recipient_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(_any_role),
):
    return await reporting.seedling_statistics(db, recipient_id=recipient_id)


@router.get("/stock", response_model=StockStats)
@cached(prefix="reports")
async def stock_report(
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(_any_role),
):
    return await reporting.stock_statistics(db)


@router.get("/withdrawals", response_model=WithdrawalStats)
@cached(prefix="reports")
async def withdrawal_report(
    days: int = Query(30, ge=1, le=366),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(_any_role),
):
    return await reporting.withdrawal_statistics(db, days=days)


@router.get("/deliveries", response_model=DeliveryStats)
@cached(prefix="reports")
async def delivery_report(
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(_any_role),
):
    return await reporting.delivery_statistics(db)


@router.get("/audit", response_model=AuditReport)
async def audit_report(
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    findings = await run_conservation_audit(db)
    return summarize(findings)
