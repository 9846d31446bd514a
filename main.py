"""
Production entrypoint for the Listing Feed Engine.

Binds to 0.0.0.0:$PORT. Reload and debug are never enabled here; use
run.py for local development.
"""

import logging
import os

import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print(f"Starting Listing Feed Engine on port {port}")

    uvicorn.run("web.app:create_app", factory=True, host="0.0.0.0", port=port)
