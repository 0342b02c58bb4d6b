#!/usr/bin/env python3
"""
Loan Ledger Entry Point

Starts the FastAPI server. Host, port, database and logging come from
LOAN_LEDGER_* environment variables (or a .env file).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from loan_ledger.api import run_server
from loan_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Loan Ledger...")
    print(f"Database: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}/api/v1")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Loan Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
