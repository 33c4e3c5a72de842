import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.core.middleware import REQUEST_ID_HEADER, ExceptionHandlerMiddleware


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(ExceptionHandlerMiddleware)

    @app.get("/ok")
    async def ok():
        return {"success": True}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("db password=hunter2")

    return app


@pytest.mark.asyncio
async def test_request_id_is_echoed_or_generated():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://testserver") as ac:
        echoed = await ac.get("/ok", headers={REQUEST_ID_HEADER: "trace-1"})
        generated = await ac.get("/ok")

    assert echoed.headers[REQUEST_ID_HEADER] == "trace-1"
    assert generated.headers[REQUEST_ID_HEADER]


@pytest.mark.asyncio
async def test_unhandled_error_becomes_opaque_500():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://testserver") as ac:
        res = await ac.get("/boom")

    assert res.status_code == 500
    assert res.json() == {"detail": "Internal server error", "type": "server_error"}
    assert "hunter2" not in res.text
