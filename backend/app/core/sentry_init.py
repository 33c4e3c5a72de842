from typing import Any, Optional

from app.core.config import SentryConfig
from app.core.middleware import REQUEST_ID_HEADER

_FILTERED = "[Filtered]"

# 凭据：任何位置出现都替换
_CREDENTIAL_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "token",
        "access_token",
        "refresh_token",
        "jwt",
        "password",
        "password_hash",
        "service_role_key",
        "supabase_key",
    }
)

# 未发表论文正文与审稿意见，只保留长度用于排查
_MANUSCRIPT_KEYS = frozenset({"abstract", "content", "comments", "file_url", "publication_title_amharic"})


def _scrub(value: Any) -> Any:
    """
    递归清洗 dict/list：凭据整体替换，论文正文替换为长度占位。
    """
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k).strip().lower()
            if key in _CREDENTIAL_KEYS:
                out[str(k)] = _FILTERED
            elif key in _MANUSCRIPT_KEYS and isinstance(v, str):
                out[str(k)] = f"[{len(v)} chars]"
            else:
                out[str(k)] = _scrub(v)
        return out
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    return value


def _request_id(headers: dict[str, Any]) -> Optional[str]:
    for k, v in headers.items():
        if str(k).strip().lower() == REQUEST_ID_HEADER.lower():
            return str(v)
    return None


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    request = event.get("request")
    if isinstance(request, dict):
        headers = request.get("headers")
        if isinstance(headers, dict):
            rid = _request_id(headers)
            if rid:
                # 与访问日志里的 rid= 对齐
                event.setdefault("tags", {})["request_id"] = rid
            request["headers"] = {k: v for k, v in headers.items() if str(k).strip().lower() not in _CREDENTIAL_KEYS}
        # 请求体整体不上传（论文正文、出版元数据）
        for field in ("data", "body", "cookies"):
            if field in request:
                request[field] = _FILTERED

    for section in ("extra", "contexts"):
        if isinstance(event.get(section), dict):
            event[section] = _scrub(event[section])

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict) and isinstance(breadcrumbs.get("values"), list):
        for crumb in breadcrumbs["values"]:
            if isinstance(crumb, dict) and isinstance(crumb.get("data"), dict):
                crumb["data"] = _scrub(crumb["data"])

    return event


def init_sentry() -> bool:
    """
    SENTRY_DSN 未配置或 SENTRY_ENABLED=false 时返回 False；调用方负责兜住初始化异常。
    """
    cfg = SentryConfig.from_env()
    if not (cfg.enabled and cfg.dsn):
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=cfg.dsn,
        environment=cfg.environment,
        traces_sample_rate=cfg.traces_sample_rate,
        integrations=[FastApiIntegration()],
        send_default_pii=False,
        max_request_body_size="never",
        before_send=_before_send,
    )
    return True
