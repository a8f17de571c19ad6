"""
Command line entry point for the context-echo memory server.

Usage:
    context-echo [--transport {http,stdio}] [--port PORT] [--host HOST]
                 [--log-level LEVEL] [--memory-dir DIR]

Environment variables:
    PORT: HTTP server port (default: 8765)
    CONTEXT_ECHO_HOST: HTTP server host (default: 127.0.0.1)
    CONTEXT_ECHO_MEMORY_DIR: Directory holding one JSON record per user (default: ./memory)
    CONTEXT_ECHO_LOG_LEVEL: Logging level (default: INFO)
    CONTEXT_ECHO_SESSION_CAPACITY: Live sessions allowed before eviction (default: 100)
    CONTEXT_ECHO_EVICTION_INTERVAL: Seconds between eviction checks (default: 60)
    CONTEXT_ECHO_JSON_RESPONSE: Answer with JSON instead of SSE streams (default: false)
"""

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

import anyio
import uvicorn
from mcp.server.stdio import stdio_server

from .config import ServerConfig
from .core import GraphStore, MemoryService
from .mcp_http.app import create_app
from .server import create_mcp_server

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    """Log to stderr (never stdout, which the stdio transport owns)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then command line flags on top."""
    config = ServerConfig.from_env()
    overrides = {}
    if args.port is not None:
        overrides["port"] = args.port
    if args.host:
        overrides["host"] = args.host
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if args.memory_dir:
        overrides["memory_dir"] = Path(args.memory_dir)
    return dataclasses.replace(config, **overrides)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="context-echo MCP memory server")
    parser.add_argument("--transport", choices=("http", "stdio"), default="http", help="Transport (default: http)")
    parser.add_argument("--port", type=int, default=None, help="Server port (default: 8765)")
    parser.add_argument("--host", default=None, help="Server host (default: 127.0.0.1)")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    parser.add_argument("--memory-dir", default=None, help="Memory directory (default: ./memory)")
    return parser.parse_args(argv)


async def run_stdio(config: ServerConfig):
    """Serve a single MCP session over stdin/stdout."""
    server = create_mcp_server(MemoryService(GraphStore(config.memory_dir)))
    logger.info("context-echo MCP server running on stdio")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def run_http(config: ServerConfig):
    logger.info(f"MCP streamable HTTP endpoint: http://{config.host}:{config.port}/mcp")
    logger.info(f"Health check: http://{config.host}:{config.port}/health")
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


def main(argv: list[str] | None = None):
    """Start the server."""
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ValueError as e:
        configure_logging(args.log_level or "INFO")
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    configure_logging(config.log_level)

    try:
        if args.transport == "stdio":
            anyio.run(run_stdio, config)
        else:
            run_http(config)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

