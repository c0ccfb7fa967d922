"""Per-user ledger analytics."""

from decimal import Decimal

from pydantic import BaseModel


class PersonalAnalytics(BaseModel):
    total_funding: Decimal
    total_withdrawals: Decimal
    total_purchases: Decimal
    pending_transactions: int


class SalesAnalytics(BaseModel):
    total_sales: Decimal
    monthly_sales: Decimal
    weekly_sales: Decimal
    total_fees: Decimal


class AnalyticsResponse(BaseModel):
    personal: PersonalAnalytics
    sales: SalesAnalytics
