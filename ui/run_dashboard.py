from __future__ import annotations

import os
import subprocess
import sys


def main() -> None:
    dashboard = os.path.join(os.path.dirname(os.path.abspath(__file__)), "dashboard.py")
    port = os.getenv("DASHBOARD_PORT", "8501")
    raise SystemExit(
        subprocess.call([sys.executable, "-m", "streamlit", "run", dashboard, "--server.port", port])
    )


if __name__ == "__main__":
    main()
