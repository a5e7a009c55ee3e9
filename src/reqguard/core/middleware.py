"""
ASGI instrumentation middleware.

Wraps ``send`` to observe the response status and body size, and finalizes
each request in a ``finally`` block so completion is recorded exactly once,
including when the handler raises or the client disconnects mid-response.
"""

from typing import List, Optional, Tuple

import structlog
from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .cache import CachedResponse
from .governance import GovernanceCore, RequestTrace

logger = structlog.get_logger(__name__)

UNCACHED_HEADERS = frozenset({b"set-cookie", b"date", b"server"})


class GovernanceMiddleware:
    """Times, classifies, caches and logs every HTTP request."""

    def __init__(self, app: ASGIApp, governance: GovernanceCore) -> None:
        self.app = app
        self.governance = governance

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        governance = self.governance
        client = scope.get("client")
        trace = governance.begin(governance.build_context(
            method=scope["method"],
            path=scope["path"],
            client_ip=client[0] if client else "unknown",
            headers=Headers(scope=scope).items(),
            query_string=scope.get("query_string", b"").decode("latin-1"),
        ))

        status_code = 500
        bytes_sent = 0
        response_headers: List[Tuple[bytes, bytes]] = []
        chunks: Optional[List[bytes]] = None
        response_complete = False

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, bytes_sent, response_headers, response_complete
            # state is updated before the message is forwarded
            if message["type"] == "http.response.start":
                status_code = message["status"]
                response_headers = list(message.get("headers", []))
            elif message["type"] == "http.response.body":
                body = message.get("body", b"")
                bytes_sent += len(body)
                if chunks is not None:
                    chunks.append(body)
                if not message.get("more_body", False):
                    response_complete = True

            await send(message)

        try:
            if governance.should_block(trace):
                await self._reject(trace, scope, receive, send_wrapper)
                return

            if trace.cache_key is not None:
                cached = governance.lookup_cache(trace)
                if cached is not None:
                    await self._replay(cached, send_wrapper)
                    return
                chunks = []

            await self.app(scope, receive, send_wrapper)

            if chunks is not None and response_complete and status_code == 200:
                governance.store_response(trace, CachedResponse(
                    body=b"".join(chunks),
                    status_code=status_code,
                    headers=tuple(
                        (name, value) for name, value in response_headers
                        if name.lower() not in UNCACHED_HEADERS
                    ),
                ))
        finally:
            governance.complete(trace, status_code, bytes_sent)

    async def _reject(self, trace: RequestTrace, scope: Scope, receive: Receive, send: Send) -> None:
        error = self.governance.rate_limit_error(trace)
        logger.warning(
            "Rejecting rate limited request",
            client_ip=trace.context.client_ip,
            path=trace.context.path,
            retry_after=error.details.get("retry_after"),
        )
        response = JSONResponse(
            status_code=error.status_code,
            content=error.to_payload(),
            headers={"Retry-After": str(error.details.get("retry_after", 1))},
        )
        await response(scope, receive, send)

    @staticmethod
    async def _replay(cached: CachedResponse, send: Send) -> None:
        await send({
            "type": "http.response.start",
            "status": cached.status_code,
            "headers": list(cached.headers),
        })
        await send({"type": "http.response.body", "body": cached.body})
