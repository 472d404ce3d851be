import asyncio

from aiohttp import web
from aiohttp.test_utils import TestServer

from loadprobe.models import RequestOutcome, Target


def outcome(target, duration_ms, status=200, size=100, error_kind=None):
    if error_kind is not None:
        return RequestOutcome(target, 0.0, duration_ms, error_kind=error_kind)
    return RequestOutcome(target, 0.0, duration_ms, status_code=status, response_bytes=size)


class StorefrontServer:
    """aiohttp test server: /ok answers 200, /broken answers 500, /created echoes POST bodies."""

    def __init__(self):
        self.posted = []
        app = web.Application()
        app.router.add_get("/", self.ok)
        app.router.add_get("/ok", self.ok)
        app.router.add_get("/broken", self.broken)
        app.router.add_post("/created", self.created)
        app.router.add_get("/moved", self.moved)
        self.server = TestServer(app)

    async def ok(self, request):
        return web.json_response({"accept": request.headers.get("Accept")})

    async def broken(self, request):
        return web.Response(status=500, text="boom")

    async def created(self, request):
        self.posted.append(await request.json())
        return web.json_response({"ok": True}, status=201)

    async def moved(self, request):
        raise web.HTTPFound("/ok")

    @property
    def base_url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"

    async def __aenter__(self):
        await self.server.start_server()
        return self

    async def __aexit__(self, *exc):
        await self.server.close()


class HangingServer:
    """Accepts connections and never answers; tracks when each client hangs up."""

    def __init__(self):
        self.connections = []
        self._server = None

    async def _handle(self, reader, writer):
        conn = {"closed": False}
        self.connections.append(conn)
        try:
            await reader.read()
        finally:
            conn["closed"] = True
            writer.close()

    @property
    def base_url(self) -> str:
        port = self._server.sockets[0].getsockname()[1]
        return f"http://127.0.0.1:{port}"

    async def __aenter__(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def __aexit__(self, *exc):
        self._server.close()
        await self._server.wait_closed()
