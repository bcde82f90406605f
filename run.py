#!/usr/bin/env python3
"""
Minibank Entry Point

Starts the FastAPI server. On startup the app waits for the configured
database (MINIBANK_DATABASE_URL), creates its tables and then serves.
"""

import sys

from minibank.api import run_server
from minibank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Minibank...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Minibank...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
