"""Valuation engine - free cash flow multiple"""

from decimal import Decimal
from typing import Optional, Tuple

from dentalflow_finance.domain.models import CashFlowReport, ValuationEstimate, to_cents

FCF_MULTIPLE = "fcf_multiple"


def estimate_value(
    cash_flow: CashFlowReport,
    industry_multiple: Decimal,
    multiple_band: Optional[Tuple[Decimal, Decimal]] = None,
) -> ValuationEstimate:
    """
    Estimate practice value from trailing free cash flow.

    estimated_value = trailing twelve month free cash flow * industry multiple

    With a (low, high) multiple band the value range is the lowest and the
    highest of the two band values, so a negative trailing cash flow still
    gives value_low <= value_high.
    """
    trailing = cash_flow.trailing_twelve_month_free_cash_flow
    estimate = ValuationEstimate(
        methodology=FCF_MULTIPLE,
        trailing_cash_flow=trailing,
        multiple=industry_multiple,
        estimated_value=to_cents(trailing * industry_multiple),
    )
    if multiple_band is not None:
        low_multiple, high_multiple = sorted(multiple_band)
        values = (to_cents(trailing * low_multiple), to_cents(trailing * high_multiple))
        estimate.low_multiple = low_multiple
        estimate.high_multiple = high_multiple
        estimate.value_low = min(values)
        estimate.value_high = max(values)
    return estimate
