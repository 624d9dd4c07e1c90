from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from microlend.core import context


def _header(headers: dict[bytes, bytes], name: bytes) -> str:
    return headers.get(name, b"").decode().strip()


class RequestContextMiddleware:
    """Bind request, tenant and branch ids to context vars for log records."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = _header(headers, b"x-request-id") or str(uuid4())
        context.set_request_id(request_id)
        tenant_id = _header(headers, b"x-tenant-id")
        if tenant_id:
            context.set_tenant_id(tenant_id)
        branch_id = _header(headers, b"x-branch-id")
        if branch_id:
            context.set_branch_id(branch_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = list(message.get("headers", []))
                response_headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = response_headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            context.clear_context()
