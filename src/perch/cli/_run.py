"""``perch run`` — serve an app in the foreground."""

import argparse
import sys
from dataclasses import replace

from perch.cli._resolve import resolve_app
from perch.errors import ConfigurationError


def run_server(args: argparse.Namespace) -> None:
    """Resolve ``args.app`` and serve it until SIGINT/SIGTERM.

    ``--host``/``--port``/``--log-level`` override the app's config.
    """
    try:
        app = resolve_app(args.app)
    except (ModuleNotFoundError, AttributeError, TypeError, ConfigurationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    try:
        if args.log_level:
            app.config = replace(app.config, log_level=args.log_level)
        app.run(host=args.host, port=args.port)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
