import threading
from typing import Any, Callable, Optional

from supabase import Client, create_client

from app.core.config import AppConfig, app_config


class _LazySupabaseClient:
    """
    Supabase client 代理：第一次访问属性时才真正创建连接。

    中文注释:
    - import 阶段不要求环境变量齐全，测试直接 monkeypatch 模块级 `supabase_admin` 即可。
    - 路由跑在线程池里，首次创建需加锁，避免并发请求各建一个 client。
    """

    def __init__(self, factory: Callable[[AppConfig], Client], *, name: str, config: AppConfig = app_config):
        self._factory = factory
        self._name = name
        self._config = config
        self._client: Optional[Client] = None
        self._lock = threading.Lock()

    def _get(self) -> Client:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = self._factory(self._config)
        return self._client

    def reset(self) -> None:
        with self._lock:
            self._client = None

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get(), item)

    def __repr__(self) -> str:
        state = "ready" if self._client is not None else "pending"
        return f"<LazySupabaseClient {self._name} ({state})>"


def _require_url(cfg: AppConfig) -> str:
    if not cfg.supabase_url:
        raise RuntimeError("SUPABASE_URL is required")
    return cfg.supabase_url


def _create_auth_client(cfg: AppConfig) -> Client:
    if not cfg.supabase_anon_key:
        raise RuntimeError("SUPABASE_ANON_KEY or SUPABASE_KEY is required")
    return create_client(_require_url(cfg), cfg.supabase_anon_key)


def _create_admin_client(cfg: AppConfig) -> Client:
    if not cfg.admin_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is required")
    return create_client(_require_url(cfg), cfg.admin_key)


# Auth API（token 非 HS256 时回退校验）
supabase: Client = _LazySupabaseClient(_create_auth_client, name="supabase")  # type: ignore[assignment]

# service_role：users / papers / reviews / notifications 的全部读写
supabase_admin: Client = _LazySupabaseClient(_create_admin_client, name="supabase_admin")  # type: ignore[assignment]
