#!/usr/bin/env python3
"""
Studio Engine Launcher

Starts the resource API server with uvicorn.
"""

import argparse
import logging
import os
import sys

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Serve registered resources over HTTP')
    parser.add_argument('--db-path', type=str, default=None,
                        help='SQLite database file (default: STUDIO_DB_PATH or studio.db)')
    parser.add_argument('--resources', type=str, action='append', default=[],
                        help='Module exposing a RESOURCES list (repeatable)')
    parser.add_argument('--host', type=str, default='127.0.0.1',
                        help='Bind address (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=8080,
                        help='Server port (default: 8080)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Logging level (default: STUDIO_LOG_LEVEL or info)')
    args = parser.parse_args(argv)

    from .config import configure_logging, settings
    configure_logging(args.log_level)

    if args.db_path:
        resolved_db_path = os.path.abspath(args.db_path)
        if not os.path.exists(resolved_db_path):
            print(f"Error: database not found: {resolved_db_path}", file=sys.stderr)
            sys.exit(1)
        settings.db_path = resolved_db_path

    from .resource import registry
    for module_path in args.resources:
        try:
            registry.load_module(module_path)
        except ImportError as e:
            print(f"Error: could not import resources from {module_path}: {e}", file=sys.stderr)
            sys.exit(1)

    if not registry.keys():
        logger.warning("No resources registered; pass --resources module.path")

    print("=" * 60)
    print("Studio Engine")
    print("=" * 60)
    print(f"Database: {settings.db_path}")
    print(f"Resources: {', '.join(registry.keys()) or '(none)'}")
    print(f"Server running at: http://{args.host}:{args.port}")
    print("Press Ctrl+C to stop the server")
    print("=" * 60)
    print()

    try:
        import uvicorn
        from .app import app
        uvicorn.run(app, host=args.host, port=args.port,
                    log_level=(args.log_level or settings.log_level).lower())
    except OSError as e:
        print(f"Error: Could not start server: {e}", file=sys.stderr)
        print(f"Port {args.port} might already be in use.", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nShutting down Studio Engine...")
        sys.exit(0)
