from typing import Any

from fastapi import Request


def request_context(request: Request) -> dict[str, Any]:
    """Client details recorded alongside activity events."""
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return {
        "ip_address": ip_address,
        "user_agent": request.headers.get("user-agent"),
    }
