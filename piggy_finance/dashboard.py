"""Streamlit app for the piggy bank tracker.

The page is a thin caller of the engine: every write goes through
:mod:`piggy_finance.piggy_banks` or :mod:`piggy_finance.transactions`
and every engine error is shown to the user instead of crashing the
page.

To run the dashboard from the command line::

    streamlit run piggy_finance/dashboard.py

or use ``run_dashboard.py`` at the project root.
"""

from __future__ import annotations

import os
import sys
from datetime import date, datetime
from typing import Dict, List, Optional

import pandas as pd
import streamlit as st

# Conditional imports to support execution both as part of a package
# and directly via ``streamlit run piggy_finance/dashboard.py``.
if __package__:
    from . import balances, budget, config, db, goals, piggy_banks, transactions
    from . import visualization as viz
    from .errors import FinanceError, NoDefaultBankError
    from .formatting import format_currency, format_transaction_date
else:
    CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
    PARENT_DIR = os.path.dirname(CURRENT_DIR)
    if PARENT_DIR not in sys.path:
        sys.path.insert(0, PARENT_DIR)
    from piggy_finance import balances, budget, config, db, goals, piggy_banks, transactions  # type: ignore
    from piggy_finance import visualization as viz  # type: ignore
    from piggy_finance.errors import FinanceError, NoDefaultBankError  # type: ignore
    from piggy_finance.formatting import format_currency, format_transaction_date  # type: ignore


def _rerun() -> None:
    if hasattr(st, 'rerun'):
        st.rerun()
    elif hasattr(st, 'experimental_rerun'):
        st.experimental_rerun()


def render_sidebar() -> Dict[str, str]:
    st.sidebar.header("🐷 Piggy Banks")
    known = db.list_users()
    user_id = st.sidebar.text_input("User ID", value=known[0] if known else "demo")
    codes = list(config.SUPPORTED_CURRENCIES)
    currency = st.sidebar.selectbox(
        "Currency",
        codes,
        index=codes.index(config.DEFAULT_CURRENCY) if config.DEFAULT_CURRENCY in codes else 0,
        format_func=lambda code: config.SUPPORTED_CURRENCIES[code],
    )
    return {'user_id': user_id.strip(), 'currency': currency}


def render_budgets(user_id: str, currency: str) -> None:
    st.subheader("Budgets")
    try:
        budgets = budget.calculate_budgets(user_id)
    except NoDefaultBankError:
        st.info("Mark one piggy bank as default to see your budgets.")
        return
    cols = st.columns(3)
    for col, data in zip(cols, (budgets.daily, budgets.weekly, budgets.monthly)):
        with col:
            st.plotly_chart(viz.create_budget_gauge(data, currency), use_container_width=True)
            st.metric("Available", format_currency(data.available, currency))
            if data.remaining is not None:
                st.caption(f"Remaining of initial budget: {format_currency(data.remaining, currency)}")


def render_piggy_banks(user_id: str, currency: str) -> List[piggy_banks.PiggyBankSummary]:
    st.subheader("Piggy banks")
    summaries = piggy_banks.list_piggy_banks(user_id)
    if not summaries:
        st.info("No piggy banks yet. Create one below.")
        return summaries

    rows = []
    for item in summaries:
        rows.append({
            'Name': item.bank.name + (" ⭐" if item.bank.is_default else ""),
            'Parent': item.parent_name or "",
            'Balance': format_currency(item.balance, currency),
            'Total (with children)': format_currency(item.total_balance, currency) if item.is_parent else "",
            'Goal': format_currency(item.bank.goal, currency) if item.bank.goal else "",
        })
    st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)

    for item in summaries:
        hint = goals.suggested_contribution(item.balance, item.bank.goal, item.bank.goal_due_date)
        if hint is None or hint.remaining_amount <= 0:
            continue
        funded = item.has_transfer_from_parent_this_month or item.has_transfer_from_default_this_month
        with st.expander(f"🎯 {item.bank.name}"):
            st.progress(goals.goal_progress(item.balance, item.bank.goal))
            st.write(
                f"Suggested: {format_currency(hint.suggested_amount, currency)} per month "
                f"for {hint.remaining_months} month(s)"
            )
            if funded:
                st.caption("Already topped up this month.")

    reconciled = balances.reconciliation_frame(
        db.fetch_piggy_banks_frame(user_id), transactions.transactions_frame(user_id)
    )
    st.plotly_chart(viz.create_bank_balances_chart(reconciled), use_container_width=True)
    return summaries


def render_forms(user_id: str, summaries: List[piggy_banks.PiggyBankSummary]) -> None:
    options = {item.bank.name: item.bank.id for item in summaries}
    create_tab, move_tab, txn_tab = st.tabs(["New piggy bank", "Transfer", "Add transaction"])

    with create_tab, st.form("create_bank"):
        name = st.text_input("Name")
        opening = st.number_input("Opening balance", min_value=0.0, step=100.0)
        goal = st.number_input("Goal (0 for none)", min_value=0.0, step=100.0)
        is_default = st.checkbox("Default bank")
        parent = st.selectbox("Parent", ["(none)"] + list(options))
        if st.form_submit_button("Create"):
            _submit(lambda: piggy_banks.create_piggy_bank(
                user_id, name, current_balance=opening, goal=goal or None, is_default=is_default,
                parent_id=options.get(parent),
            ), "Piggy bank created.")

    with move_tab, st.form("move_money"):
        source = st.selectbox("From", list(options))
        destination = st.selectbox("To", ["(none)"] + list(options))
        amount = st.number_input("Amount", min_value=0.0, step=10.0)
        is_withdrawal = st.checkbox("Withdraw instead")
        if st.form_submit_button("Move money"):
            _submit(lambda: piggy_banks.move_money(
                user_id, options.get(source), amount,
                to_piggy_bank_id=options.get(destination), is_withdrawal=is_withdrawal,
            )['message'], None)

    with txn_tab, st.form("add_transaction"):
        t_amount = st.number_input("Amount", min_value=1.0, step=1.0, key="txn_amount")
        is_expense = st.checkbox("Expense", value=True)
        note = st.text_input("Note")
        bank = st.selectbox("Piggy bank", list(options), key="txn_bank")
        t_date = st.date_input("Date", value=date.today())
        if st.form_submit_button("Add"):
            _submit(lambda: transactions.add_transaction(
                user_id, t_amount, 'expense' if is_expense else 'income', date=t_date,
                piggy_bank_id=options.get(bank), note=note,
            ), "Transaction added.")


def _submit(action, success_message: Optional[str]) -> None:
    try:
        result = action()
    except FinanceError as e:
        st.error(str(e))
        return
    st.session_state['flash_message'] = success_message or str(result)
    _rerun()


def render_flash_message() -> None:
    message = st.session_state.pop('flash_message', None)
    if message:
        st.success(message)


def render_transactions(user_id: str, currency: str) -> None:
    st.subheader("Recent transactions")
    df = transactions.transactions_frame(user_id)
    if df.empty:
        st.info("No transactions recorded.")
        return
    st.plotly_chart(viz.create_daily_spending_chart(df), use_container_width=True)
    view = df.head(50).copy()
    view['When'] = view['Date'].apply(format_transaction_date)
    view['Amount'] = view.apply(
        lambda r: format_currency(r['Amount'] if r['Type'] == 'income' else -r['Amount'], currency), axis=1
    )
    st.dataframe(view[['When', 'Note', 'Category', 'Piggy Bank', 'Amount']],
                 use_container_width=True, hide_index=True)


def main() -> None:
    st.set_page_config(page_title="Piggy Banks", page_icon="🐷", layout="wide")
    config.configure_logging()
    db.init_db()
    sidebar = render_sidebar()
    if not sidebar['user_id']:
        st.warning("Enter a user ID to continue.")
        return
    st.title("🐷 Piggy Bank Tracker")
    st.caption(datetime.now().strftime("%A, %d %B %Y"))
    render_flash_message()
    render_budgets(sidebar['user_id'], sidebar['currency'])
    summaries = render_piggy_banks(sidebar['user_id'], sidebar['currency'])
    render_forms(sidebar['user_id'], summaries)
    render_transactions(sidebar['user_id'], sidebar['currency'])


if __name__ == "__main__":
    main()
