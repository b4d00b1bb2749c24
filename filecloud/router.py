"""Request routing by method and path regular expression."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable

from filecloud.http import Method
from filecloud.util import escape_regex


@dataclass(frozen=True)
class Route:
    pattern: re.Pattern
    method: Method
    handler: Callable[..., Any]
    params: tuple[str, ...] = field(default_factory=tuple)


class Router:
    """Ordered table of routes; the first one that matches wins."""

    def __init__(self) -> None:
        self.routes: list[Route] = []

    def add(self, path: str, method, handler) -> None:
        """Add a route matching ``path`` exactly."""
        self.add_pattern("^" + escape_regex(path) + "$", method, handler, ())

    def add_pattern(self, pattern: str, method, handler, params=()) -> None:
        """Add a route whose groups are bound, in order, to ``params``."""
        self.routes.append(Route(re.compile(pattern), Method(method), handler, tuple(params)))

    def match(self, method, path: str) -> tuple[Route, dict[str, str]] | None:
        """Return the matching route and its path parameters, or None."""
        method = Method(method)
        for route in self.routes:
            if route.method is not method:
                continue
            found = route.pattern.fullmatch(path)
            if found is None:
                continue
            values = {name: value or "" for name, value in zip(route.params, found.groups())}
            return route, values
        return None