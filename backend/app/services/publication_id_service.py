from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import HTTPException
from postgrest.exceptions import APIError

from app.core.config import PublicationIdConfig
from app.lib.api_client import supabase_admin

logger = logging.getLogger("rpms.publication_id")

SEQUENCE_FUNCTION = "next_publication_id"


def next_publication_id(last_id: Optional[str], *, prefix: str, seed_id: str) -> str:
    """
    由当前最大编号推导下一个编号。

    规则:
    - 无记录 / 空值 / 长度不足 / 前缀不符 / 序号无法解析 -> 返回种子编号
    - 否则序号 + 1，按十进制自然长度拼回前缀（不补零，位数可增长）
    """
    raw = str(last_id or "").strip()
    if not raw or len(raw) <= len(prefix) or not raw.startswith(prefix):
        return seed_id

    suffix = raw[len(prefix):]
    # str.isdigit 也接受 "²" 等非 ASCII 数字，int() 会失败
    if not (suffix.isascii() and suffix.isdigit()):
        return seed_id
    return f"{prefix}{int(suffix) + 1}"


def is_well_formed_publication_id(value: Optional[str], *, prefix: str) -> bool:
    """
    prefix + 至少一位 ASCII 数字，例如 SMU_P201817001
    """
    raw = str(value or "").strip()
    suffix = raw[len(prefix):]
    return raw.startswith(prefix) and bool(suffix) and suffix.isascii() and suffix.isdigit()


def _is_missing_function_error(error: APIError) -> bool:
    code = str(getattr(error, "code", "") or "").upper()
    text = str(error).lower()
    return code == "PGRST202" or "could not find the function" in text


def _scalar_from_rpc(data: Any) -> str:
    # PostgREST 对返回标量的函数可能返回 "X" / ["X"] / [{"next_publication_id": "X"}]
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        data = data.get(SEQUENCE_FUNCTION) or next(iter(data.values()), None)
    return str(data or "").strip()


class PublicationIdGenerator:
    """
    出版编号生成器：generate_next() -> "SMU_P201817001" 形式的外部编号。

    中文注释:
    1) 首选数据库原子计数函数（单行计数表 + 单语句自增返回），并发调用不会拿到重复编号。
    2) 计数函数未部署（PGRST202）时降级为“扫描字典序最大编号 + 1”，该路径并发下可能重复，
       仅作为兼容旧库的兜底。
    """

    def __init__(self, config: Optional[PublicationIdConfig] = None) -> None:
        self.client = supabase_admin
        self.config = config or PublicationIdConfig.from_env()

    def generate_next(self) -> str:
        if self.config.use_sequence:
            generated = self._from_sequence()
            if generated:
                return generated
        return self._from_scan()

    def _from_sequence(self) -> Optional[str]:
        try:
            resp = self.client.rpc(
                SEQUENCE_FUNCTION,
                {"p_prefix": self.config.prefix, "p_seed": self.config.seed},
            ).execute()
        except APIError as e:
            if _is_missing_function_error(e):
                logger.warning("%s() not deployed, falling back to scan: %s", SEQUENCE_FUNCTION, e)
                return None
            logger.error("publication id sequence failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to generate Publication ID") from e
        except Exception as e:
            logger.error("publication id sequence failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to generate Publication ID") from e

        value = _scalar_from_rpc(getattr(resp, "data", None))
        return value or None

    def _from_scan(self) -> str:
        prefix = self.config.prefix
        try:
            resp = (
                self.client.table("papers")
                .select("publication_id")
                .like("publication_id", f"{prefix}%")
                .order("publication_id", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("publication id scan failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to generate Publication ID") from e

        rows = getattr(resp, "data", None) or []
        last_id = rows[0].get("publication_id") if rows else None
        return next_publication_id(last_id, prefix=prefix, seed_id=self.config.seed_id)
