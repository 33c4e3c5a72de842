import copy
import os
import sys
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, AsyncGenerator, Callable, Optional
from uuid import uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from postgrest.exceptions import APIError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from main import app

# === 全局测试配置 ===
# 中文注释:
# 1. 显式使用 pytest_asyncio.fixture，兼容 STRICT 模式。
# 2. Supabase 统一替换为内存 fake（fake_db），模拟 PostgREST 链式调用与外键级联删除。
# 3. JWT 令牌用与后端相同的 HS256 密钥签发。

JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")

_PATCH_TARGETS = (
    "app.core.roles",
    "app.services.paper_service",
    "app.services.notification_service",
    "app.services.publication_id_service",
    "app.services.review_service",
)

# 父表 -> [(子表, 外键列)]，对应迁移里的 ON DELETE CASCADE
_CASCADES: dict[str, tuple[tuple[str, str], ...]] = {
    "users": (("papers", "author_id"), ("reviews", "reviewer_id"), ("notifications", "user_id")),
    "papers": (("reviews", "paper_id"), ("notifications", "paper_id")),
}

_DEFAULTS: dict[str, dict[str, Any]] = {
    "papers": {
        "abstract": "",
        "content": "",
        "file_url": "",
        "type": "Research Paper",
        "publication_id": "",
        "institution_code": "",
        "publication_isced_band": "",
    },
    "notifications": {"is_read": False, "paper_id": None},
}

_BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class _FakeResponse:
    def __init__(self, data: Any):
        self.data = data
        self.count = None


class FakeStore:
    """
    内存表存储；每次 insert 自动补 id / created_at（单调递增，便于 order 断言）。
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self._serial = count(1)
        self._clock = count(1)
        self.fail_tables: set[str] = set()

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        return copy.deepcopy(self.tables)

    def now(self) -> str:
        return (_BASE_TIME + timedelta(seconds=next(self._clock))).isoformat()

    def new_row(self, table: str, payload: dict[str, Any]) -> dict[str, Any]:
        row = {**_DEFAULTS.get(table, {}), **payload}
        if "id" not in row or row["id"] is None:
            row["id"] = next(self._serial) if table == "notifications" else str(uuid4())
        stamp = self.now()
        row.setdefault("created_at", stamp)
        if table != "notifications":
            row.setdefault("updated_at", stamp)
        return row

    def delete(self, table: str, doomed: list[dict[str, Any]]) -> None:
        ids = {str(r.get("id")) for r in doomed}
        self.tables[table] = [r for r in self.rows(table) if str(r.get("id")) not in ids]
        for child, column in _CASCADES.get(table, ()):
            children = [r for r in self.rows(child) if str(r.get(column)) in ids]
            if children:
                self.delete(child, children)

    def add_user(self, role: str, *, name: Optional[str] = None, email: Optional[str] = None) -> dict[str, Any]:
        user_id = str(uuid4())
        row = self.new_row(
            "users",
            {
                "id": user_id,
                "role": role,
                "name": name or f"Test {role}",
                "email": email or f"{role}_{user_id[:8]}@example.com",
            },
        )
        self.rows("users").append(row)
        return {"id": user_id, "role": role, "email": row["email"], "name": row["name"]}

    def notifications_for(self, user_id: str) -> list[dict[str, Any]]:
        return [n for n in self.rows("notifications") if str(n.get("user_id")) == str(user_id)]


class _FakeQuery:
    def __init__(self, store: FakeStore, table: str):
        self._store = store
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: list[Callable[[dict[str, Any]], bool]] = []
        self._order: Optional[tuple[str, bool]] = None
        self._limit: Optional[int] = None

    # Chain builders
    def select(self, *_args, **_kwargs):
        self._op = "select"
        return self

    def insert(self, payload):
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload):
        self._op = "update"
        self._payload = payload
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, key: str, value: Any):
        self._filters.append(lambda r: str(r.get(key)) == str(value))
        return self

    def in_(self, key: str, values):
        normalized = {str(v) for v in values}
        self._filters.append(lambda r: str(r.get(key)) in normalized)
        return self

    def like(self, key: str, pattern: str):
        # 仅支持 'prefix%' 形式
        prefix = str(pattern).rstrip("%")
        self._filters.append(lambda r: str(r.get(key) or "").startswith(prefix))
        return self

    def order(self, key: str, desc: bool = False):
        self._order = (key, bool(desc))
        return self

    def limit(self, value: int):
        self._limit = int(value)
        return self

    def execute(self):
        if self._table in self._store.fail_tables:
            raise APIError({"code": "08006", "message": "connection failure", "details": None, "hint": None})

        rows = self._store.rows(self._table)

        if self._op == "insert":
            payloads = self._payload if isinstance(self._payload, list) else [self._payload]
            created = [self._store.new_row(self._table, dict(p)) for p in payloads]
            rows.extend(created)
            return _FakeResponse([dict(r) for r in created])

        matched = [r for r in rows if all(f(r) for f in self._filters)]

        if self._op == "update":
            for r in matched:
                r.update(self._payload)
            return _FakeResponse([dict(r) for r in matched])

        if self._op == "delete":
            out = [dict(r) for r in matched]
            self._store.delete(self._table, matched)
            return _FakeResponse(out)

        out = [dict(r) for r in matched]
        if self._order:
            key, desc = self._order
            out.sort(key=lambda r: str(r.get(key) or ""), reverse=desc)
        if self._limit is not None:
            out = out[: self._limit]
        return _FakeResponse(out)


class FakeSupabase:
    def __init__(self, store: FakeStore):
        self.store = store

    def table(self, name: str):
        return _FakeQuery(self.store, name)

    def rpc(self, fn: str, params: Optional[dict] = None):
        # 模拟“计数函数未部署”的旧库，生成器应降级为扫描
        raise APIError(
            {
                "code": "PGRST202",
                "message": f"Could not find the function public.{fn} in the schema cache",
                "details": None,
                "hint": None,
            }
        )


@pytest.fixture
def fake_db(monkeypatch) -> FakeStore:
    """
    替换所有服务模块里的 supabase_admin
    """
    store = FakeStore()
    client = FakeSupabase(store)
    for target in _PATCH_TARGETS:
        monkeypatch.setattr(f"{target}.supabase_admin", client)
    return store


@pytest_asyncio.fixture
async def client() -> AsyncGenerator:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver"
    ) as ac:
        yield ac


def generate_test_token(
    user_id: str = "00000000-0000-0000-0000-000000000000",
    email: str = "test@example.com",
    *,
    expires_in_seconds: int = 3600,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "exp": now + timedelta(seconds=expires_in_seconds),
        "iat": now,
        "role": "authenticated",
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def bearer(user: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {generate_test_token(user['id'], user.get('email') or 'test@example.com')}"}


@pytest.fixture
def auth_headers() -> Callable[[dict], dict[str, str]]:
    return bearer


@pytest.fixture
def expired_token() -> str:
    return generate_test_token(expires_in_seconds=-3600)
