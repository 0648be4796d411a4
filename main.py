#!/usr/bin/env python3
"""
Launch Orchestrator Server

Runs the HTTP API that drives launches end to end:
- Launch wallet funding through the mixing service
- Token creation, sells and reward claims on the venue
- Status polling and reconciliation

Usage:
    python main.py                      # Serve on 0.0.0.0:8000
    python main.py --port 9000          # Custom port
    python main.py --reload             # Auto-reload for development
"""

import argparse
import logging
import os

import uvicorn
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("launch-orchestrator")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Launch Orchestrator API server")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    args = parser.parse_args()

    if not os.getenv("KEY_ENCRYPTION_SECRET"):
        logger.error("❌ KEY_ENCRYPTION_SECRET is not set (python cli.py generate-secret)")
        raise SystemExit(1)

    logger.info(f"🚀 Starting launch API on {args.host}:{args.port}")
    uvicorn.run(
        "api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
