"""PDF rendering for the one-page savings summary.

The layout mirrors what a sales rep walks a homeowner through: headline
savings, where each kWh comes from, and how the investment pays back.
"""

import math
from typing import List, Mapping, Optional, Tuple

from fpdf import FPDF

from services.plan_results import CombinedPlanResult, EstimatorInputs

_PLAN_LABELS = {"tou": "Time-of-Use", "ulo": "Ultra-Low Overnight"}


def _draw_metric_card(
    pdf: FPDF,
    x: float,
    y: float,
    w: float,
    h: float,
    title: str,
    value: str,
    subtitle: str,
    fill_rgb: Tuple[int, int, int],
) -> None:
    pdf.set_fill_color(*fill_rgb)
    pdf.set_draw_color(230, 232, 235)
    pdf.rect(x, y, w, h, style="DF")
    pdf.set_xy(x + 2, y + 2)
    pdf.set_text_color(50, 50, 50)
    pdf.set_font("Helvetica", "B", 10)
    pdf.cell(w - 4, 5, title, ln=1)

    pdf.set_xy(x + 2, y + 9)
    pdf.set_font("Helvetica", "", 13)
    pdf.set_text_color(15, 15, 15)
    pdf.cell(w - 4, 7, value, ln=1)

    pdf.set_xy(x + 2, y + h - 6)
    pdf.set_font("Helvetica", "", 8)
    pdf.set_text_color(80, 80, 80)
    pdf.cell(w - 4, 4, subtitle)
    pdf.set_text_color(0, 0, 0)


def _draw_section_header(pdf: FPDF, title: str, margin: float, usable_width: float) -> None:
    pdf.set_font("Helvetica", "B", 12)
    pdf.set_text_color(20, 20, 20)
    pdf.cell(0, 7, title, ln=1)
    pdf.set_draw_color(220, 223, 228)
    pdf.line(margin, pdf.get_y(), margin + usable_width, pdf.get_y())
    pdf.ln(2)


def _draw_subsection_title(pdf: FPDF, title: str) -> None:
    pdf.set_font("Helvetica", "B", 10)
    pdf.set_text_color(35, 35, 35)
    pdf.cell(0, 5, title, ln=1)
    pdf.set_text_color(0, 0, 0)


def _draw_share_bar(
    pdf: FPDF,
    x: float,
    y: float,
    w: float,
    h: float,
    segments: List[Tuple[str, float, Tuple[int, int, int]]],
) -> None:
    """Horizontal stacked bar of percentage shares (0-100)."""
    pdf.set_draw_color(230, 232, 235)
    pdf.rect(x, y, w, h)
    cursor = x
    for _, share, color in segments:
        seg_w = w * max(0.0, min(share, 100.0)) / 100.0
        if seg_w <= 0:
            continue
        pdf.set_fill_color(*color)
        pdf.rect(cursor, y, seg_w, h, style="F")
        cursor += seg_w

    pdf.set_xy(x, y + h + 1)
    pdf.set_font("Helvetica", "", 7)
    legend_w = w / max(1, len(segments))
    for label, share, color in segments:
        pdf.set_text_color(*color)
        pdf.cell(legend_w, 4, f"{label} {share:.1f}%")
    pdf.set_text_color(0, 0, 0)
    pdf.ln(5)


def _draw_table(
    pdf: FPDF,
    x: float,
    y: float,
    col_widths: List[float],
    rows: List[List[str]],
    header_fill: Tuple[int, int, int] = (245, 248, 255),
    row_fill: Tuple[int, int, int] = (255, 255, 255),
    font_size: int = 9,
) -> float:
    """Render a simple table and return the updated y position (bottom of table)."""
    pdf.set_xy(x, y)
    pdf.set_font("Helvetica", "B", font_size)
    pdf.set_fill_color(*header_fill)
    pdf.set_draw_color(220, 223, 228)
    pdf.set_text_color(20, 20, 20)
    for idx, cell in enumerate(rows[0]):
        pdf.cell(col_widths[idx], 6, _latin1(cell), border=1, ln=0, align="L", fill=True)
    pdf.ln(6)
    pdf.set_font("Helvetica", "", font_size)
    pdf.set_fill_color(*row_fill)
    for row in rows[1:]:
        pdf.set_x(x)
        for idx, cell in enumerate(row):
            pdf.cell(col_widths[idx], 6, _latin1(cell), border=1, ln=0, align="L", fill=True)
        pdf.ln(6)
    return pdf.get_y()


def _latin1(text: str) -> str:
    # Core fonts only cover latin-1; unsupported characters print as "?".
    return str(text).encode("latin-1", errors="replace").decode("latin-1")


def _fmt_money(value: float) -> str:
    return f"${value:,.0f}"


def _fmt_payback(years: float) -> str:
    if not math.isfinite(years):
        return "Not reached"
    return f"{years:.1f} yrs"


def _fmt_roi(roi) -> str:
    return roi if isinstance(roi, str) else f"{roi:.1f}%"


def _output_bytes(pdf: FPDF) -> bytes:
    pdf_bytes = pdf.output(dest="S")
    return pdf_bytes.encode("latin-1") if isinstance(pdf_bytes, str) else bytes(pdf_bytes)


def build_savings_pdf(
    inputs: EstimatorInputs,
    results: Mapping[str, CombinedPlanResult],
    customer_name: Optional[str] = None,
) -> bytes:
    """Render the one-page solar + battery savings summary for both rate plans."""
    if not results:
        pdf = FPDF(format="A4")
        pdf.add_page()
        pdf.set_font("Helvetica", "B", 14)
        pdf.cell(0, 10, "Solar + Battery Savings Summary")
        pdf.ln(8)
        pdf.set_font("Helvetica", "", 10)
        pdf.set_text_color(90, 90, 90)
        pdf.multi_cell(
            0,
            5,
            "Savings summary unavailable because no rate plan results were generated. "
            "Enter annual usage to view the estimate.",
        )
        return _output_bytes(pdf)

    # Lead with the plan that saves the customer the most.
    best_id = max(results, key=lambda plan_id: results[plan_id].annual)
    best = results[best_id]

    pdf = FPDF(format="A4")
    pdf.set_auto_page_break(auto=True, margin=12)
    pdf.add_page()
    margin = 12
    usable_width = 210 - 2 * margin

    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 9, "Solar + Battery Savings Summary", ln=1)
    pdf.set_font("Helvetica", "", 9)
    pdf.set_text_color(90, 90, 90)
    subtitle = f"Annual usage {inputs.annual_usage_kwh:,.0f} kWh | Solar {best.solar_production_kwh:,.0f} kWh/yr"
    if best.battery.usable_kwh > 0:
        subtitle += f" | Battery {best.battery.brand} {best.battery.model} ({best.battery.usable_kwh:,.1f} kWh usable)"
    if customer_name:
        subtitle = f"Prepared for {customer_name} | " + subtitle
    pdf.cell(0, 5, _latin1(subtitle), ln=1)
    pdf.set_text_color(0, 0, 0)
    pdf.ln(2)

    card_w = (usable_width - 6) / 4
    card_h = 22
    y = pdf.get_y()
    cards = [
        ("Annual savings", _fmt_money(best.annual), _PLAN_LABELS.get(best_id, best_id), (234, 246, 238)),
        ("Monthly savings", _fmt_money(best.monthly), "Year one", (234, 242, 252)),
        ("Payback", _fmt_payback(best.projection.payback_years), f"Net cost {_fmt_money(best.net_cost)}", (252, 246, 232)),
        (
            "25-year profit",
            _fmt_money(best.projection.net_profit_25_year),
            f"ROI {_fmt_roi(best.projection.annual_roi)} / yr",
            (244, 238, 250),
        ),
    ]
    for idx, (title, value, sub, fill) in enumerate(cards):
        _draw_metric_card(pdf, margin + idx * (card_w + 2), y, card_w, card_h, title, value, sub, fill)
    pdf.set_y(y + card_h + 4)

    _draw_section_header(pdf, "Where your energy comes from", margin, usable_width)
    display = best.offset_display
    _draw_share_bar(
        pdf,
        margin,
        pdf.get_y(),
        usable_width,
        7,
        [
            ("Solar direct", display.solar_direct, (242, 169, 0)),
            ("Solar via battery", display.solar_charged_battery, (46, 139, 87)),
            ("Bought from grid", display.bought_from_grid, (120, 130, 145)),
        ],
    )
    pdf.set_font("Helvetica", "", 8)
    pdf.set_text_color(90, 90, 90)
    pdf.multi_cell(
        0,
        4,
        f"Free energy is capped at {best.offset_cap.cap_fraction * 100:.0f}% of usage to account for winter months "
        "when solar production falls short.",
    )
    pdf.set_text_color(0, 0, 0)
    pdf.ln(2)

    _draw_section_header(pdf, "Rate plan comparison", margin, usable_width)
    plan_rows = [["Metric"] + [_PLAN_LABELS.get(plan_id, plan_id) for plan_id in results]]
    plan_rows.append(["Bill before"] + [_fmt_money(r.baseline_annual_bill) for r in results.values()])
    plan_rows.append(["Bill after"] + [_fmt_money(r.post_annual_bill) for r in results.values()])
    plan_rows.append(["Annual savings"] + [_fmt_money(r.annual) for r in results.values()])
    plan_rows.append(["  from solar"] + [_fmt_money(r.solar_only_annual) for r in results.values()])
    plan_rows.append(["  from battery"] + [_fmt_money(r.battery_annual) for r in results.values()])
    plan_rows.append(["Payback"] + [_fmt_payback(r.projection.payback_years) for r in results.values()])
    plan_rows.append(["25-year savings"] + [_fmt_money(r.projection.total_savings_25_year) for r in results.values()])
    metric_w = usable_width * 0.34
    plan_w = (usable_width - metric_w) / max(1, len(results))
    _draw_table(pdf, margin, pdf.get_y(), [metric_w] + [plan_w] * len(results), plan_rows)
    pdf.ln(3)

    _draw_section_header(pdf, "Investment", margin, usable_width)
    _draw_subsection_title(pdf, "Costs after rebates")
    cost_rows = [
        ["Item", "Amount"],
        ["Solar system (net)", _fmt_money(best.solar_net_cost)],
        ["Solar rebate applied", _fmt_money(best.solar_rebate_applied)],
        ["Battery (before rebate)", _fmt_money(best.battery_gross_cost)],
        ["Battery rebate applied", _fmt_money(best.battery_rebate_applied)],
        ["Total net cost", _fmt_money(best.net_cost)],
    ]
    table_widths = [usable_width * 0.55, usable_width * 0.45]
    _draw_table(pdf, margin, pdf.get_y(), table_widths, cost_rows)
    pdf.ln(2)

    _draw_subsection_title(pdf, "Projection milestones")
    milestone_rows = [["Year", "Annual savings", "Cumulative savings"]]
    for row in best.projection.yearly_projections:
        if row.year in (1, 5, 10, 15, 20, 25):
            milestone_rows.append(
                [str(row.year), _fmt_money(row.annual_savings), _fmt_money(row.cumulative_savings)]
            )
    if len(milestone_rows) > 1:
        third = usable_width / 3
        _draw_table(pdf, margin, pdf.get_y(), [third, third, third], milestone_rows)

    pdf.ln(2)
    pdf.set_font("Helvetica", "", 8)
    pdf.set_text_color(90, 90, 90)
    assumptions = inputs.assumptions
    pdf.multi_cell(
        0,
        4,
        f"Estimate assumes {assumptions.rate_escalation * 100:.1f}% annual rate escalation and "
        f"{assumptions.system_degradation * 100:.1f}% yearly equipment degradation over {assumptions.years} years. "
        "Actual savings depend on household usage patterns and utility rate changes.",
    )

    return _output_bytes(pdf)


__all__ = ["build_savings_pdf"]
