#!/usr/bin/env python3
"""
Launch the RBAC auth API under uvicorn, listening on PORT (8080 when unset).
"""
import os
import sys
import traceback

import uvicorn

DEFAULT_PORT = 8080


def server_port() -> int:
    """Port from the PORT environment variable."""
    value = os.getenv("PORT", "").strip()
    return int(value) if value else DEFAULT_PORT


if __name__ == "__main__":
    port = server_port()
    try:
        print(f"RBAC auth API on http://localhost:{port} (docs at /docs)")
        uvicorn.run("rbac_service.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
    except Exception as e:
        print(f"Error starting server: {e}")
        traceback.print_exc()
        sys.exit(1)
