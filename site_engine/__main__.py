"""
Run the Site Engine API with uvicorn.

Usage:
    python -m site_engine --host 0.0.0.0 --port 8000
"""
import argparse
import logging

import uvicorn

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Site Engine API server")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logger.info(f"Starting Site Engine on {args.host}:{args.port}")
    uvicorn.run("site_engine.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
