#!/usr/bin/env python3
"""
Agora - Entry Point
=====================
One-command startup for the Agora catalog and chat server.

Usage:
    python app.py              # Start with settings from config.yaml
    python app.py -p 9000      # Start on a custom port
    python app.py --port 0     # Let the OS pick a free port

This script:
    1. Loads environment variables from .env (secrets)
    2. Loads configuration from config.yaml
    3. Configures logging
    4. Starts uvicorn with the application factory
"""

import argparse
import logging
import os

import uvicorn
from dotenv import load_dotenv


def main():
    """Parse arguments, load config, and start the web server."""

    # -- Parse command-line arguments ------------------------------------------
    parser = argparse.ArgumentParser(
        description="Agora - realtime product catalog and chat",
    )
    parser.add_argument(
        "-p", "--port", type=int, default=None,
        help="Port to listen on, 0 for an OS-chosen port (overrides config.yaml)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address (overrides config.yaml)",
    )
    args = parser.parse_args()

    project_dir = os.path.dirname(os.path.abspath(__file__))

    # -- Load environment variables from .env ----------------------------------
    env_path = os.path.join(project_dir, ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)

    # -- Load configuration to get web server settings -------------------------
    from agora.config import ConfigManager
    config = ConfigManager(project_dir).load()

    host = args.host or config["web"]["host"]
    port = args.port if args.port is not None else config["web"]["port"]
    log_level = str(config["web"].get("log_level", "info")).lower()

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    # -- Start the web server --------------------------------------------------
    uvicorn.run(
        "agora.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
