"""
Export functionality for partner attribution.
Builds export frames for attribution breakdowns and writes Excel workbooks.
"""

import io
from typing import Dict, List

import pandas as pd

from models import AttributionBreakdown
from utils import format_timestamp

BREAKDOWN_COLUMNS = [
    "deal_id", "model", "partner_id", "partner_name",
    "percentage", "payout", "touchpoints", "role", "calculated_at",
]


def breakdown_to_dataframe(breakdown: AttributionBreakdown) -> pd.DataFrame:
    """One row per partner entry, in breakdown order."""
    rows = [
        {
            "deal_id": breakdown.deal_id,
            "model": breakdown.model.value,
            "partner_id": a.partner_id,
            "partner_name": a.partner_name,
            "percentage": a.percentage,
            "payout": a.payout,
            "touchpoints": a.touchpoints,
            "role": a.role,
            "calculated_at": format_timestamp(breakdown.calculated_at),
        }
        for a in breakdown.attributions
    ]
    return pd.DataFrame(rows, columns=BREAKDOWN_COLUMNS)


def breakdowns_to_dataframe(breakdowns: List[AttributionBreakdown]) -> pd.DataFrame:
    frames = [breakdown_to_dataframe(b) for b in breakdowns if b.attributions]
    if not frames:
        return pd.DataFrame(columns=BREAKDOWN_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def export_to_excel(dataframes: Dict[str, pd.DataFrame]) -> bytes:
    """
    Export multiple DataFrames to Excel with multiple sheets.

    Args:
        dataframes: Dictionary of {sheet_name: DataFrame}

    Returns:
        Excel file content as bytes
    """
    output = io.BytesIO()

    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        workbook = writer.book

        header_format = workbook.add_format({
            'bold': True,
            'text_wrap': True,
            'valign': 'top',
            'fg_color': '#4472C4',
            'font_color': 'white',
            'border': 1
        })

        currency_format = workbook.add_format({
            'num_format': '$#,##0.00',
            'border': 1
        })

        # percentages are already on a 0-100 scale
        percent_format = workbook.add_format({
            'num_format': '0.00',
            'border': 1
        })

        cell_format = workbook.add_format({
            'border': 1
        })

        for sheet_name, df in dataframes.items():
            # Excel caps sheet names at 31 characters
            sheet_name = sheet_name[:31]
            df.to_excel(writer, sheet_name=sheet_name, index=False, startrow=1, header=False)

            worksheet = writer.sheets[sheet_name]

            for col_num, value in enumerate(df.columns.values):
                worksheet.write(0, col_num, value, header_format)

            for col_num, col_name in enumerate(df.columns):
                if df.empty:
                    max_len = len(str(col_name))
                else:
                    max_len = max(df[col_name].astype(str).apply(len).max(), len(str(col_name)))
                width = min(max_len + 2, 50)

                name = col_name.lower()
                if 'payout' in name or 'amount' in name or 'revenue' in name:
                    worksheet.set_column(col_num, col_num, width, currency_format)
                elif 'percent' in name:
                    worksheet.set_column(col_num, col_num, width, percent_format)
                else:
                    worksheet.set_column(col_num, col_num, width, cell_format)

    output.seek(0)
    return output.read()
