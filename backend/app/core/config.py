import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class AppConfig:
    """
    Application environment config.

    中文注释:
    - anon key 仅用于 Auth API 校验 token；业务表读写统一使用 service role key。
    - 部署环境里 SUPABASE_ANON_KEY 与 SUPABASE_KEY 两个变量名并存，优先前者。
    """
    supabase_url: str
    supabase_anon_key: str
    supabase_service_role_key: str

    @property
    def admin_key(self) -> str:
        # 本地开发未配置 service role 时回退 anon key
        return self.supabase_service_role_key or self.supabase_anon_key

    @staticmethod
    def from_env() -> "AppConfig":
        return AppConfig(
            supabase_url=(os.environ.get("SUPABASE_URL") or "").strip().rstrip("/"),
            supabase_anon_key=(
                os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("SUPABASE_KEY") or ""
            ).strip(),
            supabase_service_role_key=(os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
        )


# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class PublicationIdConfig:
    """
    外部出版编号（publication_id）生成配置

    中文注释:
    1) 编号格式为 prefix + 十进制序号，不补零（SMU_P201817001 -> SMU_P201817002）。
    2) use_sequence=True 时优先走数据库原子计数函数 next_publication_id；
       函数未部署时由服务层降级为“扫描最大值 + 1”。
    """

    prefix: str
    seed: int
    use_sequence: bool

    @property
    def seed_id(self) -> str:
        return f"{self.prefix}{self.seed}"

    @staticmethod
    def from_env() -> "PublicationIdConfig":
        prefix = (os.environ.get("PUBLICATION_ID_PREFIX") or "SMU_P").strip() or "SMU_P"

        seed_raw = (os.environ.get("PUBLICATION_ID_SEED") or "201817001").strip()
        try:
            seed = int(seed_raw)
        except ValueError:
            seed = 201817001

        use_sequence = _env_bool("PUBLICATION_ID_USE_SEQUENCE", True)

        return PublicationIdConfig(prefix=prefix, seed=seed, use_sequence=use_sequence)


@dataclass(frozen=True)
class SentryConfig:
    """
    Sentry 错误监控配置（默认关闭）
    """

    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        enabled = _env_bool("SENTRY_ENABLED", dsn is not None)

        environment = (
            os.environ.get("SENTRY_ENVIRONMENT") or os.environ.get("APP_ENV") or "development"
        ).strip().lower()

        rate_raw = (os.environ.get("SENTRY_TRACES_SAMPLE_RATE") or "0.0").strip()
        try:
            traces_sample_rate = float(rate_raw)
        except ValueError:
            traces_sample_rate = 0.0

        return SentryConfig(
            enabled=enabled,
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
        )
