"""
ASGI 入口别名：`uvicorn app.main:app`。

真实 FastAPI 实例定义在 backend/main.py（模块名 `main`），这里只做转发，
避免重复创建应用对象导致中间件/路由不一致。
"""

from main import app

__all__ = ["app"]
