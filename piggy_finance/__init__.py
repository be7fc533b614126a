"""Top‑level package for the Piggy Bank tracker.

The primary modules are:

* ``piggy_banks`` – bank lifecycle, transfers, withdrawals and balance adjustments
* ``transactions`` – the general ledger of user-entered income and expenses
* ``budget`` – daily, weekly and monthly allowances from the default bank
* ``balances`` and ``periods`` – the pure reconciliation and calendar helpers
* ``dashboard`` – a Streamlit app that ties everything together

To run the dashboard from the command line you can execute:

```bash
streamlit run piggy_finance/dashboard.py
```
"""

from . import balances  # noqa: F401  # re-exported for convenience
from . import periods  # noqa: F401  # re-exported for convenience
from .budget import calculate_budgets, create_budget_record  # noqa: F401
from .piggy_banks import (  # noqa: F401
    create_piggy_bank,
    delete_piggy_bank,
    list_piggy_banks,
    transfer,
    update_piggy_bank,
    withdraw,
)
# Import dashboard lazily.  Streamlit may not be installed in all
# environments (e.g. during unit testing).
try:
    from . import dashboard  # type: ignore  # noqa: F401
except ModuleNotFoundError:
    dashboard = None  # type: ignore


__all__ = [
    "balances",
    "periods",
    "calculate_budgets",
    "create_budget_record",
    "create_piggy_bank",
    "delete_piggy_bank",
    "list_piggy_banks",
    "transfer",
    "update_piggy_bank",
    "withdraw",
    "dashboard",
]
