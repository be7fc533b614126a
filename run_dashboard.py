#!/usr/bin/env python3
"""Direct launcher for the Piggy Bank dashboard.

This script launches Streamlit on ``piggy_finance/dashboard.py`` from the
project root so the package imports resolve.
"""

import subprocess
import sys
from pathlib import Path

# Get the project root and dashboard module
project_root = Path(__file__).parent.resolve()
dashboard_path = project_root / "piggy_finance" / "dashboard.py"

if __name__ == "__main__":
    subprocess.run([
        sys.executable, "-m", "streamlit", "run",
        str(dashboard_path)
    ], cwd=project_root)
