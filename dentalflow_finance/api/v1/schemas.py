"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from dentalflow_finance.domain.models import (
    CashFlowReport,
    CostOfCapitalReport,
    DetectedLoan,
    LoanStatus,
    LoanSchedule,
    PayoffScenario,
    ValuationSnapshotRecord,
)


class ReportModel(BaseModel):
    """Base for responses built from domain dataclasses"""

    model_config = ConfigDict(from_attributes=True)


class MonthlyBucketSchema(ReportModel):
    month_start: date
    inflow: Decimal
    outflow: Decimal
    capital_expenditure: Decimal
    net_operating_cash_flow: Decimal
    free_cash_flow: Decimal
    transaction_count: int


class CashFlowResponse(ReportModel):
    """Response for GET /v1/finance/cash-flow"""

    tenant_id: str
    window_months: int
    period_start: date
    period_end: date
    buckets: List[MonthlyBucketSchema]
    avg_monthly_free_cash_flow: Decimal
    trailing_twelve_month_free_cash_flow: Decimal
    rolling_three_month_free_cash_flow: Decimal
    total_free_cash_flow: Decimal
    reserve_threshold: Decimal
    excess_cash: Decimal

    @classmethod
    def from_report(cls, report: CashFlowReport) -> "CashFlowResponse":
        return cls.model_validate(report)


class LoanSchema(ReportModel):
    id: str
    vendor: str
    estimated_principal: Decimal
    monthly_payment: Decimal
    estimated_annual_rate: Decimal
    occurrences: int
    first_detected_date: date
    last_seen_date: date
    status: LoanStatus
    loan_type: Optional[str] = None
    user_overridden: bool = False


class LoanUpdateRequest(BaseModel):
    """Request body for PUT /v1/finance/loans/{loan_id}; omitted fields are left unchanged"""

    status: Optional[LoanStatus] = None
    estimated_annual_rate: Optional[Decimal] = Field(None, ge=0, le=1, allow_inf_nan=False)
    estimated_principal: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)
    monthly_payment: Optional[Decimal] = Field(None, gt=0, allow_inf_nan=False)
    loan_type: Optional[str] = None


class LoanListResponse(BaseModel):
    """Response for GET /v1/finance/loans"""

    loans: List[LoanSchema]

    @classmethod
    def from_loans(cls, loans: List[DetectedLoan]) -> "LoanListResponse":
        return cls(loans=[LoanSchema.model_validate(loan) for loan in loans])


class DetectLoansResponse(BaseModel):
    """Response for POST /v1/finance/loans/detect - only new or changed loans"""

    detected: List[LoanSchema]

    @classmethod
    def from_loans(cls, loans: List[DetectedLoan]) -> "DetectLoansResponse":
        return cls(detected=[LoanSchema.model_validate(loan) for loan in loans])


class AmortizationRowSchema(ReportModel):
    period: int
    payment: Decimal
    interest: Decimal
    principal: Decimal
    remaining_balance: Decimal


class LoanScheduleSchema(BaseModel):
    loan_id: str
    vendor: str
    months: int
    total_interest: Decimal
    rows: List[AmortizationRowSchema]

    @classmethod
    def from_schedule(cls, schedule: LoanSchedule) -> "LoanScheduleSchema":
        return cls(
            loan_id=schedule.loan_id,
            vendor=schedule.vendor,
            months=schedule.months,
            total_interest=schedule.total_interest,
            rows=[AmortizationRowSchema.model_validate(r) for r in schedule.rows],
        )


class PayoffScenarioSchema(BaseModel):
    extra_monthly_payment: Decimal
    months_to_debt_free: int
    total_interest: Decimal
    schedules: List[LoanScheduleSchema]

    @classmethod
    def from_scenario(cls, scenario: PayoffScenario) -> "PayoffScenarioSchema":
        return cls(
            extra_monthly_payment=scenario.extra_monthly_payment,
            months_to_debt_free=scenario.months_to_debt_free,
            total_interest=scenario.total_interest,
            schedules=[LoanScheduleSchema.from_schedule(s) for s in scenario.schedules],
        )


class LoanSummarySchema(ReportModel):
    loan_id: str
    vendor: str
    principal: Decimal
    annual_rate: Decimal
    monthly_payment: Decimal
    remaining_months: int
    total_remaining_interest: Decimal
    loan_type: Optional[str] = None


class ExcludedLoanSchema(ReportModel):
    loan_id: str
    vendor: str
    reason: str


class RefinanceOpportunitySchema(ReportModel):
    loan_id: str
    vendor: str
    current_rate: Decimal
    market_rate: Decimal
    remaining_balance: Decimal
    current_monthly_payment: Decimal
    new_monthly_payment: Decimal
    monthly_savings: Decimal
    total_interest_savings: Decimal
    closing_costs: Decimal
    break_even_months: int


class PayoffComparisonSchema(BaseModel):
    strategy: str
    extra_monthly_payment: Decimal
    months_saved: int
    interest_saved: Decimal
    baseline: PayoffScenarioSchema
    accelerated: PayoffScenarioSchema


class CostOfCapitalResponse(BaseModel):
    """Response for GET /v1/finance/cost-of-capital and POST .../payoff"""

    tenant_id: str
    loans: List[LoanSummarySchema]
    excluded_loans: List[ExcludedLoanSchema]
    total_debt: Decimal
    total_monthly_payment: Decimal
    weighted_average_cost_of_capital: Decimal
    total_annual_debt_service: Decimal
    refinance_opportunities: List[RefinanceOpportunitySchema]
    payoff: PayoffComparisonSchema

    @classmethod
    def from_report(cls, report: CostOfCapitalReport) -> "CostOfCapitalResponse":
        payoff = report.payoff
        return cls(
            tenant_id=report.tenant_id,
            loans=[LoanSummarySchema.model_validate(l) for l in report.loans],
            excluded_loans=[ExcludedLoanSchema.model_validate(e) for e in report.excluded_loans],
            total_debt=report.total_debt,
            total_monthly_payment=report.total_monthly_payment,
            weighted_average_cost_of_capital=report.weighted_average_cost_of_capital,
            total_annual_debt_service=report.total_annual_debt_service,
            refinance_opportunities=[
                RefinanceOpportunitySchema.model_validate(o) for o in report.refinance_opportunities
            ],
            payoff=PayoffComparisonSchema(
                strategy=payoff.strategy,
                extra_monthly_payment=payoff.extra_monthly_payment,
                months_saved=payoff.months_saved,
                interest_saved=payoff.interest_saved,
                baseline=PayoffScenarioSchema.from_scenario(payoff.baseline),
                accelerated=PayoffScenarioSchema.from_scenario(payoff.accelerated),
            ),
        )


class PayoffRequest(BaseModel):
    """Request body for POST /v1/finance/cost-of-capital/payoff"""

    # Absent, negative or non-numeric values are treated as 0 by the service
    extra_monthly_payment: Any = Field(None, description="Extra paid each month")
    strategy: Literal["avalanche", "snowball"] = "avalanche"


class ValuationSnapshotSchema(ReportModel):
    """A single valuation snapshot"""

    id: str
    computed_at: datetime
    methodology: str
    trailing_cash_flow: Decimal
    multiple: Decimal
    estimated_value: Decimal
    low_multiple: Optional[Decimal] = None
    high_multiple: Optional[Decimal] = None
    value_low: Optional[Decimal] = None
    value_high: Optional[Decimal] = None

    @classmethod
    def from_record(cls, record: ValuationSnapshotRecord) -> "ValuationSnapshotSchema":
        return cls.model_validate(record)


class ValuationHistoryResponse(BaseModel):
    """Response for GET /v1/finance/valuation/history"""

    tenant_id: str
    history: List[ValuationSnapshotSchema]
