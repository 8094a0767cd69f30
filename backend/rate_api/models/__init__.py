# Persistent tables
from rate_api.models.orm import (
    RoomTypeRow, RatePlanRow, RoomRateRow, RateTierRow, RateOverrideRow,
    PricingRuleRow, RatePackageComponentRow, RateAuditRow,
)

__all__ = [
    'RoomTypeRow', 'RatePlanRow', 'RoomRateRow', 'RateTierRow', 'RateOverrideRow',
    'PricingRuleRow', 'RatePackageComponentRow', 'RateAuditRow',
]
