from billminder.charts.templates import (
    bills_by_category_chart,
    monthly_obligations_chart,
)

__all__ = [
    "bills_by_category_chart",
    "monthly_obligations_chart",
]
