"""Request key generation for caching and deduplication."""

import json
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


def normalize_endpoint(endpoint: str) -> str:
    """Normalize an endpoint for consistent request keys.

    Args:
        endpoint: URL or path of the request

    Returns:
        Endpoint with lower-cased scheme/host, sorted query parameters and
        no insignificant trailing slash
    """
    parsed = urlparse(endpoint)
    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    path = parsed.path
    if path != "/":
        path = path.rstrip("/")
        if not path and parsed.netloc:
            path = "/"
    normalized = parsed._replace(
        scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower(), path=path, query=query, fragment=""
    )
    return urlunparse(normalized)


def normalize_params(params: Any) -> str:
    """Serialize request parameters deterministically."""
    if params is None:
        params = {}
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class RequestKey:
    """Identity of a request for the cache and the in-flight deduplicator.

    Example:
        >>> str(RequestKey.build("get", "https://API.example.com/cities/?b=2&a=1"))
        'GET:https://api.example.com/cities?a=1&b=2:{}'
    """

    method: str
    endpoint: str
    params: str = "{}"
    value: str = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "value", f"{self.method}:{self.endpoint}:{self.params}")

    @classmethod
    def build(cls, method: str, endpoint: str, params: Optional[Any] = None) -> "RequestKey":
        return cls(method.upper(), normalize_endpoint(endpoint), normalize_params(params))

    def __str__(self) -> str:
        return self.value
