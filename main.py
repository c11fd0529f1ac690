"""
keen-pbr-web Entry Point

Usage:
  keen-pbr-web [--config PATH] [--host HOST] [--port PORT]

Defaults come from KEEN_PBR_CONFIG / KEEN_PBR_HOST / KEEN_PBR_PORT.
"""

import argparse
import logging

import uvicorn

from api_server import create_app
from keenpbr import settings

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="keen-pbr web interface")
    parser.add_argument("--config", default=settings.CONFIG_PATH, help="path to keen-pbr.conf")
    parser.add_argument("--host", default=settings.HOST, help="address to listen on")
    parser.add_argument("--port", type=int, default=settings.PORT, help="port to listen on")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(config_path=args.config)
    logger.info(f"keen-pbr-web {settings.VERSION} listening on {args.host}:{args.port} (config: {args.config})")
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
