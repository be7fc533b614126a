#!/usr/bin/env python3
"""Show piggy banks whose stored balance no longer matches their ledger."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from piggy_finance import balances, config, db


def main(user_id: str, show_all: bool = False) -> int:
    config.configure_logging()
    db.init_db()
    banks = db.fetch_piggy_banks_frame(user_id)
    if banks.empty:
        print(f"No piggy banks for user '{user_id}'.")
        return 0

    report = balances.reconciliation_frame(banks, db.fetch_transactions_frame(user_id))
    overridden = report[report['overridden']]
    print(f"Piggy banks: {len(report)}, manually adjusted: {len(overridden)}")

    rows = report if show_all else overridden
    if rows.empty:
        print("Every stored balance matches its ledger. 🎉")
        return 0
    rows = rows.assign(difference=(rows['current_balance'] - rows['calculated_balance']).round(2))
    print(rows[['id', 'Name', 'current_balance', 'calculated_balance', 'difference']].to_string(index=False))
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Compare stored piggy bank balances with their ledgers.')
    parser.add_argument('user_id', help='Owner whose piggy banks to check')
    parser.add_argument('--all', action='store_true', help='List every bank, not only diverging ones')
    args = parser.parse_args()
    raise SystemExit(main(args.user_id, show_all=args.all))
