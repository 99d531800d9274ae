#!/usr/bin/env python3
"""
Main entry point for IssueDesk Auth
"""

import argparse
import sys

from . import cli_main, serve_main


def main() -> None:
    if len(sys.argv) > 1 and sys.argv[1] == "serve":
        parser = argparse.ArgumentParser(prog="issuedesk-auth serve")
        parser.add_argument("--host", default=None, help="Host to bind to")
        parser.add_argument("--port", type=int, default=None, help="Port to bind to")
        args = parser.parse_args(sys.argv[2:])
        serve_main(host=args.host, port=args.port)
        return

    sys.exit(cli_main(sys.argv[1:]))


if __name__ == "__main__":
    main()
