"""User dashboard figures."""

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db, require_permissions
from src.models.user import User
from src.services.invoices import get_dashboard_stats
from src.services.permissions import PERMISSIONS as P

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


class DashboardStatsResponse(BaseModel):
    total_invoices: int
    pending_invoices: int
    overdue_invoices: int
    total_clients: int
    total_revenue: Decimal
    outstanding_amount: Decimal
    current_year_revenue: Decimal
    current_year_turnover: Decimal
    btw_owed: Decimal
    kor_threshold: Decimal
    kor_eligible: bool
    generated_on: date


@router.get("/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(
    user: User = Depends(require_permissions(P.INVOICE_READ)),
    db: AsyncSession = Depends(get_db),
) -> DashboardStatsResponse:
    today = date.today()
    stats = await get_dashboard_stats(db, user.id, today)
    return DashboardStatsResponse(**stats, generated_on=today)
