"""Main entry point for Xiangqi server."""

import argparse
import logging
import os
import uvicorn

from xiangqi.engine import DIFFICULTY_LEVELS

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Xiangqi Server")
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--difficulty",
        "-d",
        choices=sorted(DIFFICULTY_LEVELS),
        default=None,
        help="Default bot difficulty for new games (default: medium)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("XIANGQI_LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # api.py reads its settings from the environment at import
    if args.difficulty:
        os.environ["XIANGQI_DIFFICULTY"] = args.difficulty
        logging.getLogger(__name__).info("Using difficulty: %s", args.difficulty)
    os.environ["XIANGQI_LOG_LEVEL"] = args.log_level.upper()

    uvicorn.run(
        "api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )
