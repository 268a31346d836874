#!/usr/bin/env python3
"""
Backend startup wrapper.

Usage: python -m backend.start_backend  (PORT / HOST env vars optional)
"""
import os
import sys

import uvicorn


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    print(f"[Backend] Starting Inkwell backend on http://{host}:{port}")
    try:
        uvicorn.run(
            "backend.main:app",
            host=host,
            port=port,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[Backend] Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
