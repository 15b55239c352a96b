"""Rewriting of returned file URLs for local development."""

from urllib.parse import urlencode

from bucket_uploader.config import DEVELOPMENT

# Files under this path segment are readable without authentication
PUBLIC_PATH_MARKER = "/_public/"


def is_public_url(url: str) -> bool:
    return PUBLIC_PATH_MARKER in url


def proxy_url(url: str, api_path: str) -> str:
    """Build the control-plane proxy URL for a file."""
    return f"{api_path.rstrip('/')}/proxy-file?{urlencode({'url': url})}"


def resolve_url(url: str, api_path: str, environment: str) -> str:
    """Return the URL a caller should use to read an uploaded file.

    Protected files need third-party cookies, which browsers do not send to
    loopback origins. In development such URLs are routed through the
    control plane's proxy endpoint; public URLs and every URL in production
    are returned unchanged.
    """
    if environment == DEVELOPMENT and not is_public_url(url):
        return proxy_url(url, api_path)
    return url
