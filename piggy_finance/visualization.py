"""Plotly visualisation helpers for the piggy bank dashboard.

Each function accepts the data objects returned by the engine
(:class:`~piggy_finance.models.BudgetData`, reconciliation frames,
transaction frames) and produces a `plotly.graph_objects.Figure` that
Streamlit renders via ``st.plotly_chart``.
"""

from __future__ import annotations

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from . import config
from .formatting import currency_symbol
from .models import BudgetData

PERIOD_LABELS = {'day': 'Today', 'week': 'This week', 'month': 'This month'}


def _empty_figure() -> go.Figure:
    fig = go.Figure()
    fig.update_layout(title="No data to display")
    return fig


def create_budget_gauge(budget: BudgetData, currency: str = config.DEFAULT_CURRENCY) -> go.Figure:
    """Gauge of spending against the period's initial budget.

    Parameters
    ----------
    budget : BudgetData
        One period from :func:`piggy_finance.budget.calculate_budgets`.
    currency : str
        Currency code used for the number prefix.

    Returns
    -------
    plotly.graph_objects.Figure
        Indicator gauge; the bar turns red once spending passes the budget.
    """
    ceiling = budget.initial_budget if budget.initial_budget and budget.initial_budget > 0 else 0.0
    over = ceiling > 0 and budget.spent > ceiling
    fig = go.Figure(go.Indicator(
        mode="gauge+number",
        value=budget.spent,
        number={'prefix': currency_symbol(currency), 'valueformat': ',.2f'},
        title={'text': PERIOD_LABELS.get(budget.period_type, budget.period_type)},
        gauge={
            'axis': {'range': [0, max(ceiling, budget.spent, 1.0)]},
            'bar': {'color': '#d62728' if over else '#2ca02c'},
            'threshold': {'line': {'color': 'black', 'width': 2}, 'value': ceiling},
        },
    ))
    fig.update_layout(height=250, margin={'t': 50, 'b': 10, 'l': 20, 'r': 20})
    return fig


def create_bank_balances_chart(reconciled: pd.DataFrame, title: str | None = None) -> go.Figure:
    """Bar chart of effective balances per piggy bank.

    Parameters
    ----------
    reconciled : pandas.DataFrame
        Output of :func:`piggy_finance.balances.reconciliation_frame`.
    title : str, optional
        Chart title.

    Returns
    -------
    plotly.graph_objects.Figure
        Bars coloured by whether the stored balance overrides the ledger.
    """
    if reconciled is None or reconciled.empty:
        return _empty_figure()
    df = reconciled[['Name', 'balance', 'overridden']].copy()
    df['Source'] = df['overridden'].map({True: 'Manual override', False: 'Ledger'})
    fig = px.bar(df, x='Name', y='balance', color='Source')
    fig.update_layout(
        title=title or "Piggy bank balances",
        xaxis_title="Piggy bank",
        yaxis_title="Balance",
    )
    return fig


def create_daily_spending_chart(transactions: pd.DataFrame, title: str | None = None) -> go.Figure:
    """Daily user spending (system entries excluded) as a bar chart.

    Parameters
    ----------
    transactions : pandas.DataFrame
        Frame from :func:`piggy_finance.db.fetch_transactions_frame`.
    title : str, optional
        Chart title.
    """
    if transactions is None or transactions.empty:
        return _empty_figure()
    spending = transactions[
        (transactions['Type'] == 'expense') & (~transactions['exclude_from_daily_spent'])
    ]
    if spending.empty:
        return _empty_figure()
    daily = spending.groupby(spending['Date'].dt.date)['Amount'].sum().reset_index()
    daily.columns = ['Day', 'Spent']
    fig = px.bar(daily, x='Day', y='Spent')
    fig.update_layout(
        title=title or "Daily spending",
        xaxis_title="Day",
        yaxis_title="Spent",
    )
    return fig
