from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from loanflow.core import context


class RequestContextMiddleware:
    """Attach request_id (and a loan group id when the caller names one) to context vars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        context.clear_context()
        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid4())
        group_id = headers.get(b"x-loan-group-id", b"").decode()

        context.set_request_id(request_id)
        if group_id:
            context.set_group_id(group_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers_list = list(message.get("headers", []))
                headers_list.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers_list
            await send(message)

        await self.app(scope, receive, send_with_request_id)
