"""Request Builder - Turns a call's configuration into an httpx.Request.

Steps, in order:

1. Resolve the proxy's bound URL (fails fast with UnboundURLError).
2. Append the call's function suffix with exactly one "/" between the two.
3. Run the call's prepare hook, which may add params/headers or raise.
4. Encode the params: URL-encoded form when every param is a string,
   multipart form as soon as one blob is present.
5. Apply headers: the proxy's User-Agent first, then the call's headers,
   which win on conflict.

The returned request has its body already buffered, so ``request.content``
is readable and the request can be sent by either a sync or async client.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from rest_proxy.errors import UnboundURLError

if TYPE_CHECKING:
    from rest_proxy.call import RestProxyCall
    from rest_proxy.params import ParamSet

logger = logging.getLogger(__name__)

# Methods whose form parameters go in the query string rather than the body
_QUERY_METHODS = frozenset({"GET", "HEAD", "DELETE"})

MULTIPART_METHOD = "POST"


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?'.

    HTTP header values must be ASCII per RFC 7230; httpx refuses to encode
    anything else.
    """
    return value.encode("ascii", errors="replace").decode("ascii")


def compose_url(base_url: str, function: str | None) -> str:
    """Join base URL and function suffix with exactly one separator."""
    if not function:
        return base_url
    if base_url.endswith("/"):
        return base_url + function.lstrip("/")
    return f"{base_url}/{function.lstrip('/')}"


def _encode_form(method: str, url: str, params: ParamSet) -> httpx.Request:
    fields = params.as_string_dict()
    if method.upper() in _QUERY_METHODS:
        return httpx.Request(method, url, params=fields or None)
    return httpx.Request(method, url, data=fields or None)


def _encode_multipart(url: str, params: ParamSet) -> httpx.Request:
    data: dict[str, str] = {}
    files: list[tuple[str, tuple[str | None, bytes, str | None]]] = []
    for name, param in params.items():
        if param.is_string:
            data[name] = param.value
        else:
            files.append((name, (param.file_name, param.content, param.content_type)))
    return httpx.Request(MULTIPART_METHOD, url, data=data, files=files)


def encode_params(method: str, url: str, params: ParamSet) -> httpx.Request:
    """Encode params as a URL-encoded form or a multipart form.

    The choice is made for the whole request: one blob switches every
    parameter to multipart.
    """
    if params.all_strings():
        return _encode_form(method, url, params)
    return _encode_multipart(url, params)


def build_request(call: RestProxyCall) -> httpx.Request:
    """Build the wire request for a call.

    Args:
        call: The configured call.

    Returns:
        httpx.Request with a buffered body.

    Raises:
        UnboundURLError: The proxy requires binding and has not been bound.
        Exception: Anything the call's prepare hook raises, unchanged.
    """
    proxy = call.proxy
    bound_url = proxy.bound_url
    # Only a proxy that requires binding and has not been bound lacks a URL
    if bound_url is None:
        logger.warning("URL requires binding and is unbound: %s", proxy.url_format)
        raise UnboundURLError(f"URL requires binding and is unbound: {proxy.url_format}")

    url = compose_url(bound_url, call.function)

    # The hook runs after the URL is known so signing hooks can use it
    call.prepare(url)

    request = encode_params(call.method, url, call.params)

    if proxy.user_agent:
        request.headers["User-Agent"] = proxy.user_agent
    for name, value in call.headers.items():
        request.headers[name] = _sanitize_header_value(value)

    request.read()
    logger.debug("Built %s %s (%d params)", request.method, request.url, len(call.params))
    return request


def describe_request(request: httpx.Request) -> dict[str, Any]:
    """Plain {method, url, headers, body} view of a built request."""
    return {
        "method": request.method,
        "url": str(request.url),
        "headers": dict(request.headers),
        "body": request.content,
    }
