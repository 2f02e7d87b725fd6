"""
HTTP client helper with standardized timeout configuration.

Ensures all outbound HTTP calls have explicit timeouts so a slow provider
cannot pin a job worker slot.
"""

import httpx


def get_httpx_timeout() -> httpx.Timeout:
    """Standard timeouts for outbound provider calls."""
    return httpx.Timeout(
        10.0,  # Default timeout for all operations
        connect=5.0,
        read=10.0,
        write=5.0,
        pool=5.0,
    )


def create_httpx_client() -> httpx.AsyncClient:
    """Create an httpx.AsyncClient with standardized timeout configuration."""
    return httpx.AsyncClient(timeout=get_httpx_timeout())
