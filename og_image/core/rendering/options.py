"""
Render Option Resolution
========================

Builds the per-request ``RenderOptions`` from configured defaults, route rule
overrides and per-page overrides (query parameters), later sources winning.
"""

from fnmatch import fnmatchcase
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from og_image.models.schemas import ImageFormat, RenderOptions

RouteRule = Union[bool, Dict[str, Any]]

INTEGER_PARAMS = ("width", "height", "cache_ttl")
OPTION_PARAMS = ("template", "renderer", "format", "emojis", "url")
IGNORED_PARAMS = ("purge",)


class RouteRules:
    """Glob patterns mapped to option overrides; ``False`` disables images."""

    def __init__(self, rules: Optional[Mapping[str, RouteRule]] = None):
        # less specific patterns first so longer patterns override them
        self.rules = sorted((rules or {}).items(), key=lambda item: len(item[0]))

    def match(self, route: str) -> Optional[Dict[str, Any]]:
        """
        Merged overrides for a route.

        Returns:
            Override dict (possibly empty), or None when images are disabled
        """
        merged: Dict[str, Any] = {}
        for pattern, rule in self.rules:
            if not fnmatchcase(route, pattern):
                continue
            if rule is False:
                return None
            if isinstance(rule, dict):
                merged.update(rule)
        return merged


def parse_image_path(path: str) -> Tuple[str, Optional[ImageFormat]]:
    """
    Split ``/blog/post/og.png`` into the page route and the requested format.

    A last segment named ``og.<ext>`` selects the format; anything else is part
    of the route.
    """
    segments = [segment for segment in path.strip("/").split("/") if segment]
    fmt = None
    if segments and segments[-1].startswith("og."):
        fmt = ImageFormat.parse(segments.pop().split(".", 1)[1])
    return "/" + "/".join(segments), fmt


def query_overrides(query: Mapping[str, str]) -> Dict[str, Any]:
    """Per-page overrides from query parameters; unknown keys become props."""
    overrides: Dict[str, Any] = {}
    props: Dict[str, Any] = {}
    for name, value in query.items():
        if name in IGNORED_PARAMS:
            continue
        if name in INTEGER_PARAMS:
            overrides[name] = int(value)
        elif name in OPTION_PARAMS:
            overrides[name] = value
        else:
            props[name] = value
    if props:
        overrides["props"] = props
    return overrides


def resolve_options(
    defaults: RenderOptions,
    rules: RouteRules,
    route: str,
    fmt: Optional[ImageFormat] = None,
    page_overrides: Optional[Dict[str, Any]] = None,
) -> Optional[RenderOptions]:
    """
    Merge defaults < route rules < page overrides (< path extension).

    Returns:
        RenderOptions, or None when a route rule disables images for the route
    """
    route_overrides = rules.match(route)
    if route_overrides is None:
        return None
    path_override = {"format": fmt.value} if fmt is not None else None
    return defaults.merged(route_overrides, page_overrides, path_override)
