#!/usr/bin/env python3
"""Claude History Monitor - Run the application.

Usage:
    python run.py
    # Or: python -m history_monitor.app

The API will be available at http://localhost:5050/api
"""

from history_monitor.app import main

if __name__ == "__main__":
    main()
