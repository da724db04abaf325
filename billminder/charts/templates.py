from __future__ import annotations

import tempfile
from decimal import Decimal
from typing import Any

import numpy as np
import plotly.graph_objects as go
import plotly.io as pio

from billminder.money import format_amount

THEME: dict[str, Any] = {
    "colors": {
        "palette": [
            "#4C72B0",
            "#DD8452",
            "#55A868",
            "#C44E52",
            "#8172B3",
            "#937860",
            "#DA8BC3",
            "#8C8C8C",
        ],
        "paid": "#55A868",
        "pending": "#DD8452",
        "trend_line": "#C44E52",
        "grid": "#E5E5E5",
        "background": "#FAFAFA",
        "text": "#2D3436",
    },
    "font": {
        "family": "Inter, sans-serif",
        "size": 13,
        "title_size": 16,
    },
    "size": {
        "width": 800,
        "height": 500,
        "scale": 2,
    },
    "margin": {"l": 60, "r": 30, "t": 60, "b": 50},
}

_template = pio.templates["plotly_white"]
_template.layout.font = dict(
    family=THEME["font"]["family"],
    size=THEME["font"]["size"],
    color=THEME["colors"]["text"],
)
_template.layout.title = dict(
    font=dict(size=THEME["font"]["title_size"], color=THEME["colors"]["text"]),
    x=0.5,
    xanchor="center",
)
_template.layout.plot_bgcolor = THEME["colors"]["background"]
_template.layout.xaxis = dict(gridcolor=THEME["colors"]["grid"])
_template.layout.yaxis = dict(gridcolor=THEME["colors"]["grid"])
pio.templates["billminder"] = _template
pio.templates.default = "billminder"


def _base_layout() -> dict[str, Any]:
    return {
        "margin": THEME["margin"],
        "width": THEME["size"]["width"],
        "height": THEME["size"]["height"],
    }


def _save(fig: go.Figure) -> str:
    tmp = tempfile.NamedTemporaryFile(suffix=".png", delete=False)  # noqa: SIM115
    tmp.close()
    fig.write_image(tmp.name, scale=THEME["size"]["scale"])
    return tmp.name


async def bills_by_category_chart(breakdown: list[dict[str, Any]], title: str = "Bills by Category") -> str | None:
    if not breakdown:
        return None

    categories = [row["category"] for row in breakdown]
    amounts = [float(row["amount"]) for row in breakdown]
    palette = THEME["colors"]["palette"]

    fig = go.Figure(
        go.Pie(
            labels=categories,
            values=amounts,
            marker=dict(colors=palette[: len(categories)]),
            texttemplate="%{label}<br>%{percent:.0%}",
            hovertemplate="%{label}: ₹%{value:,.0f}<extra></extra>",
            hole=0.35,
            sort=False,
        )
    )
    fig.update_layout(**_base_layout(), title=title, showlegend=False)
    fig.add_annotation(
        text=format_amount(sum((Decimal(str(a)) for a in amounts), Decimal(0))),
        x=0.5,
        y=0.5,
        showarrow=False,
        font=dict(size=18, color=THEME["colors"]["text"]),
    )
    return _save(fig)


async def monthly_obligations_chart(totals: list[dict[str, Any]]) -> str | None:
    """Stacked paid/pending bars per month, oldest first, with a linear trend of the totals."""
    if not totals:
        return None

    months = [row["month"] for row in totals]
    paid = [float(row["paid"]) for row in totals]
    pending = [float(row["total"] - row["paid"]) for row in totals]
    overall = [p + q for p, q in zip(paid, pending)]

    fig = go.Figure()
    for name, values in (("Paid", paid), ("Pending", pending)):
        fig.add_trace(
            go.Bar(
                x=months,
                y=values,
                name=name,
                marker_color=THEME["colors"][name.lower()],
                hovertemplate="%{x}: ₹%{y:,.0f}<extra></extra>",
            )
        )

    if len(overall) >= 3:
        x_idx = list(range(len(overall)))
        z = np.polyfit(x_idx, overall, 1)
        trend = np.polyval(z, x_idx)
        fig.add_trace(
            go.Scatter(
                x=months,
                y=trend.tolist(),
                mode="lines",
                line=dict(color=THEME["colors"]["trend_line"], width=2, dash="dash"),
                name="Trend",
                hoverinfo="skip",
            )
        )

    fig.update_layout(
        **_base_layout(),
        barmode="stack",
        title="Monthly Obligations",
        yaxis_title="INR",
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
    )
    return _save(fig)
