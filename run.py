#!/usr/bin/env python3
"""
eBanking Ledger Entry Point

Starts the FastAPI server on the configured host and port (8085 by default).
"""

import sys

from ebanking.api import run_server
from ebanking.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting eBanking Ledger...")
    print(f"💾 Storage backend: {config.storage_backend}")
    print(f"🔒 Authentication {'enabled' if config.auth_enabled else 'DISABLED'}")
    print("💰 All balances use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\n👋 Shutting down eBanking Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
