"""Static discovery of client routes and edge functions from source trees."""

import logging
import re
from collections.abc import Sequence
from pathlib import Path

from site_probe.models.discovery import DiscoveredRoute, EdgeFunction

log = logging.getLogger(__name__)

ROUTE_SOURCE_SUFFIXES: frozenset[str] = frozenset(
    [".tsx", ".ts", ".jsx", ".js", ".vue"]
)

# <Route path="/x" ...> and { path: '/x', ... }
ROUTE_PATTERN = re.compile(r"""\bpath\s*[=:]\s*\{?\s*["'`](/[^"'`]*)["'`]""")

PROTECTED_MARKERS = re.compile(r"ProtectedRoute|RequireAuth|requireAuth|AuthGuard")

JSON_BODY_PATTERN = re.compile(r"await\s+req\.json\(\)")
DESTRUCTURED_BODY_PATTERN = re.compile(
    r"const\s*\{([^}]*)\}\s*=\s*await\s+req\.json\(\)"
)
AUTH_HEADER_PATTERN = re.compile(r"""headers\.get\(\s*["']authorization["']""", re.I)

FUNCTION_ENTRYPOINTS: Sequence[str] = ("index.ts", "index.js", "index.mjs")

EDGE_FUNCTION_PREFIX = "/functions/v1/"


def scan_routes(routes_dir: Path) -> Sequence[DiscoveredRoute]:
    """Collect route declarations from the source files under ``routes_dir``.

    Returns:
        Routes sorted by path, one per distinct path

    """
    routes: dict[str, DiscoveredRoute] = {}
    for source in sorted(routes_dir.rglob("*")):
        if source.suffix not in ROUTE_SOURCE_SUFFIXES or not source.is_file():
            continue
        for line in source.read_text(encoding="utf-8", errors="replace").splitlines():
            for match in ROUTE_PATTERN.finditer(line):
                path = match.group(1)
                if path in routes:
                    continue
                routes[path] = DiscoveredRoute(
                    id=f"route-{path}",
                    path=path,
                    source_file=str(source.relative_to(routes_dir)),
                    params=[
                        segment[1:]
                        for segment in path.split("/")
                        if segment.startswith(":")
                    ],
                    requires_auth=PROTECTED_MARKERS.search(line) is not None,
                )
    log.info("Found %d route(s) in %s", len(routes), routes_dir)
    return sorted(routes.values(), key=lambda route: route.path)


def scan_edge_functions(functions_dir: Path, base_url: str) -> Sequence[EdgeFunction]:
    """Discover edge functions, one per directory holding an entrypoint.

    The HTTP method and request shape are inferred from the entrypoint:
    a function reading a JSON body is POST and the destructured body fields
    become the request shape; anything else is GET.
    """
    functions: list[EdgeFunction] = []
    if not functions_dir.is_dir():
        log.warning("Edge functions directory %s does not exist", functions_dir)
        return functions

    for directory in sorted(p for p in functions_dir.iterdir() if p.is_dir()):
        if directory.name.startswith(("_", ".")):
            continue
        candidates = (directory / name for name in FUNCTION_ENTRYPOINTS)
        entrypoint = next((path for path in candidates if path.is_file()), None)
        if entrypoint is None:
            continue
        source = entrypoint.read_text(encoding="utf-8", errors="replace")
        functions.append(
            EdgeFunction(
                name=directory.name,
                endpoint=edge_function_url(base_url, directory.name),
                method="POST" if JSON_BODY_PATTERN.search(source) else "GET",
                request_shape=infer_request_shape(source),
                source="static",
                requires_auth=AUTH_HEADER_PATTERN.search(source) is not None,
            )
        )
    log.info("Found %d edge function(s) in %s", len(functions), functions_dir)
    return functions


def infer_request_shape(source: str) -> dict[str, str]:
    """Map body fields destructured from ``req.json()`` to JSON types."""
    match = DESTRUCTURED_BODY_PATTERN.search(source)
    if match is None:
        return {}
    shape: dict[str, str] = {}
    for raw in match.group(1).split(","):
        name = raw.split(":")[0].split("=")[0].strip()
        if name.isidentifier():
            shape[name] = "string"
    return shape


def edge_function_url(base_url: str, name: str) -> str:
    """Return the invocation URL of edge function ``name``."""
    return f"{base_url.rstrip('/')}{EDGE_FUNCTION_PREFIX}{name}"


def edge_function_name(url: str) -> str | None:
    """Return the function name if ``url`` invokes an edge function."""
    path = url.split("?", 1)[0]
    marker = path.find(EDGE_FUNCTION_PREFIX)
    if marker < 0:
        return None
    name = path[marker + len(EDGE_FUNCTION_PREFIX) :].strip("/").split("/")[0]
    return name or None
