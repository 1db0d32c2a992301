"""Serve the chat API with uvicorn: ``python -m src.api [--host H] [--port P]``."""

import argparse
import os
from typing import Optional, Sequence

import uvicorn
from dotenv import load_dotenv


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the portfolio chat API")
    parser.add_argument("--host", default=os.getenv("CHAT_API_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("CHAT_API_PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = build_arg_parser().parse_args(argv)
    uvicorn.run("src.api.app:app", host=args.host, port=args.port, reload=args.reload, log_level="info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
