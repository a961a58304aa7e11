#!/usr/bin/env python3
"""Run the messages bridge with uvicorn.

Usage:
    python proxy.py [--config configs/config_default.yaml] [--host HOST] [--port PORT]
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

# Load environment variables from .env next to this script, if it exists
env_path = Path(__file__).with_name(".env")
if env_path.exists():
    load_dotenv(env_path)


def main() -> None:
    parser = argparse.ArgumentParser(description="Anthropic-compatible Messages API bridge")
    parser.add_argument("--config", help="Path to the YAML config file")
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, help="Bind port (overrides config)")
    args = parser.parse_args()

    if args.config:
        os.environ["MSGBRIDGE_CONFIG"] = args.config
    if args.host:
        os.environ["MSGBRIDGE_HOST"] = args.host
    if args.port:
        os.environ["MSGBRIDGE_PORT"] = str(args.port)

    # Imported late so the overrides above are seen by the config loader
    from src.main import app

    host = app.state.server_host
    port = app.state.server_port
    logging.getLogger("messages-bridge").info(f"Starting uvicorn on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
