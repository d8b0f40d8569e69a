"""``perch routes`` — list registered routes.

Prints one row per route in specificity order, the order in which the
dispatcher would try them for a path they all match.
"""

import argparse
import sys

from perch.cli._resolve import resolve_app
from perch.errors import ConfigurationError
from perch.routing.route import Route


def _guard_names(route: Route) -> str:
    return ", ".join(g.name for g in route.guards) or "-"


def run_routes(args: argparse.Namespace) -> None:
    """List registered routes for a perch app.

    Resolves ``args.app``, freezes it (surfacing route conflicts), and
    prints a table of METHOD, PATH, GUARDS and HANDLER.
    """
    try:
        app = resolve_app(args.app)
        table = app.routes
    except (ModuleNotFoundError, AttributeError, TypeError, ConfigurationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    indexed = list(enumerate(table.routes))
    if not indexed:
        print("No routes registered.")
        return

    # Same ordering the route table applies to candidates
    indexed.sort(key=lambda item: (item[1].rank, item[0]))

    rows: list[tuple[str, str, str, str]] = []
    for _, route in indexed:
        handler_name = getattr(route.handler, "__name__", str(route.handler))
        if route.name:
            handler_name = f"{handler_name} ({route.name})"
        rows.append((route.method, route.pattern, _guard_names(route), handler_name))

    headers = ("METHOD", "PATH", "GUARDS")
    widths = [max(len(header), *(len(row[i]) for row in rows)) for i, header in enumerate(headers)]
    fmt = f"{{:<{widths[0]}}}  {{:<{widths[1]}}}  {{:<{widths[2]}}}  {{}}"
    print(fmt.format("METHOD", "PATH", "GUARDS", "HANDLER"))
    sep_len = sum(widths) + 6 + max(len(r[3]) for r in rows)
    print("-" * min(sep_len, 80))
    for row in rows:
        print(fmt.format(*row))
