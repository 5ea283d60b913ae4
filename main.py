"""
Main entrypoint: FastAPI server in the main thread.

The price refresh loop runs in a daemon thread started by the app lifespan.

Env: ALGORAND_NETWORK, ALGOD_URL, ALGOD_TOKEN, DATABASE_URL, API_HOST, API_PORT, LOG_LEVEL, etc.

Equivalent: uvicorn backend_algoswarm.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server in the main thread."""
    api_host = os.getenv("API_HOST", "0.0.0.0").strip()
    api_port = int(os.getenv("API_PORT", "8000").strip() or "8000")

    from backend_algoswarm.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=api_host, port=api_port)
    uvicorn.run(app, host=api_host, port=api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
