# Overview: Explicit actor/request metadata passed into every pipeline and audit call.

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """
    Who is acting and from where.

    Routes build this from the authenticated request; CLI commands and tests
    build it directly. Services never look up the current user themselves.
    """
    actor_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def system(cls) -> "RequestContext":
        return cls()

    @classmethod
    def from_request(cls) -> "RequestContext":
        from flask import g, request

        user = getattr(g, "current_user", None)
        return cls(
            actor_id=user.id if user else None,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
