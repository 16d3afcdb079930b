"""
Dashboard and visualization components for partner attribution.
Includes charts for breakdowns, partner performance and program analytics.
"""

import pandas as pd
import plotly.graph_objects as go
import plotly.express as px


def _empty_figure(message: str) -> go.Figure:
    fig = go.Figure()
    fig.add_annotation(
        text=message,
        xref="paper", yref="paper",
        x=0.5, y=0.5, showarrow=False,
        font=dict(size=16, color="gray")
    )
    return fig


def create_attribution_pie_chart(attribution_df: pd.DataFrame) -> go.Figure:
    """
    Create a donut chart showing how a deal's payout is split by partner.

    Args:
        attribution_df: DataFrame with columns: partner_name, payout

    Returns:
        Plotly figure object
    """
    if attribution_df.empty:
        return _empty_figure("No attribution data available")

    fig = go.Figure(data=[go.Pie(
        labels=attribution_df['partner_name'],
        values=attribution_df['payout'],
        hole=0.4,
        marker=dict(
            colors=px.colors.qualitative.Set3
        ),
        textinfo='label+percent',
        hovertemplate='<b>%{label}</b><br>$%{value:,.2f}<br>%{percent}<extra></extra>'
    )])

    fig.update_layout(
        title="Attribution Distribution",
        template='plotly_white',
        height=400,
        showlegend=True,
        legend=dict(
            orientation="v",
            yanchor="middle",
            y=0.5,
            xanchor="left",
            x=1.05
        )
    )

    return fig


def create_partner_performance_bar_chart(partner_df: pd.DataFrame) -> go.Figure:
    """
    Create a horizontal bar chart showing attributed payout per partner.

    Args:
        partner_df: DataFrame with columns: partner_name, total_payout

    Returns:
        Plotly figure object
    """
    if partner_df.empty or partner_df['total_payout'].sum() == 0:
        return _empty_figure("No partner attribution data available")

    partner_df = partner_df.sort_values('total_payout', ascending=True)

    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=partner_df['total_payout'],
        y=partner_df['partner_name'],
        orientation='h',
        marker=dict(
            color=partner_df['total_payout'],
            colorscale=px.colors.sequential.Blues[::-1],
            showscale=False
        ),
        text=partner_df['total_payout'].apply(lambda x: f"${x:,.0f}"),
        textposition='outside'
    ))

    fig.update_layout(
        title="Partner Payout Leaderboard",
        xaxis_title="Attributed Payout ($)",
        yaxis_title="",
        template='plotly_white',
        height=max(300, len(partner_df) * 40),
        margin=dict(l=150, r=50, t=50, b=50)
    )

    return fig


def create_model_usage_chart(models_df: pd.DataFrame) -> go.Figure:
    """
    Create a bar chart of deal counts per attribution model.

    Args:
        models_df: DataFrame with columns: attribution_model, count, total_amount
    """
    if models_df.empty:
        return _empty_figure("No deals recorded")

    fig = go.Figure(data=[go.Bar(
        x=models_df['attribution_model'],
        y=models_df['count'],
        marker=dict(color='#3b82f6'),
        customdata=models_df['total_amount'],
        hovertemplate='<b>%{x}</b><br>Deals: %{y}<br>$%{customdata:,.0f}<extra></extra>'
    )])

    fig.update_layout(
        title="Attribution Model Usage",
        xaxis_title="Model",
        yaxis_title="Deals",
        template='plotly_white',
        height=350
    )

    return fig


def create_touchpoint_distribution(touchpoints_df: pd.DataFrame) -> go.Figure:
    """
    Create a donut chart showing distribution of touchpoint types.

    Args:
        touchpoints_df: DataFrame with columns: touchpoint_type, count
    """
    if touchpoints_df.empty:
        return _empty_figure("No touchpoints recorded")

    fig = go.Figure(data=[go.Pie(
        labels=touchpoints_df['touchpoint_type'],
        values=touchpoints_df['count'],
        hole=0.5,
        marker=dict(
            colors=['#3b82f6', '#10b981', '#f59e0b', '#ef4444', '#8b5cf6', '#94a3b8']
        ),
        textinfo='label+value',
        hovertemplate='<b>%{label}</b><br>Count: %{value}<br>%{percent}<extra></extra>'
    )])

    fig.update_layout(
        title="Touchpoint Type Distribution",
        template='plotly_white',
        height=350,
        showlegend=False
    )

    return fig
