"""Configurações do session_keeper via variáveis de ambiente.

Todas as configurações são carregadas de env vars (ou arquivo .env em dev).
Credenciais dos admins NUNCA ficam aqui: vêm do CredentialsProvider.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from session_keeper.observability.logging import get_logger

# -----------------------------------------------------------------------------
# Constantes do upstream (portal de conta do operador)
# -----------------------------------------------------------------------------
UPSTREAM_BASE_URL: str = "https://www.alfa.com.lb"
DEFAULT_AUTH_COOKIE: str = "__ACCOUNT"


class Settings(BaseSettings):
    """Configurações lidas do ambiente.

    Os valores padrão reproduzem a política de renovação em produção.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    # Aplicação
    service_name: str = "session_keeper"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"  # json | text
    timezone: str = "Asia/Beirut"

    # Shared state store
    state_store_backend: str = "memory"  # memory | redis
    redis_url: str | None = None
    state_store_failover: bool = True  # Redis indisponível -> memória (best-effort)

    # Upstream
    upstream_base_url: str = UPSTREAM_BASE_URL
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    probe_path: str = "/en/account"
    probe_success_marker: str = "account"
    probe_timeout_seconds: float = 5.0
    login_page_path: str = "/en/account/login"
    login_path: str = "/en/account/login"
    login_timeout_seconds: float = 30.0
    login_max_retries: int = 1  # Retries apenas em erro transitório

    # Política de sessão
    auth_cookie_names: list[str] = [DEFAULT_AUTH_COOKIE]
    session_cookie_denylist: list[str] = ["ASP.NET_SessionId", "JSESSIONID", "PHPSESSID"]
    default_session_lifetime_seconds: int = 86400  # Teto quando cookie não traz expiração
    session_ttl_cap_seconds: int = 2592000  # 30 dias
    renewal_buffer_ratio: float = 0.2
    renewal_buffer_min_seconds: float = 10.0
    renewal_buffer_max_seconds: float = 30.0
    min_refresh_lead_seconds: float = 10.0

    # Workflow de renovação
    refresh_lock_ttl_seconds: int = 300
    login_in_progress_ttl_seconds: int = 300
    max_concurrent_refreshes: int = 5
    max_concurrent_logins: int = 5
    login_slot_wait_seconds: float = 10.0
    slot_poll_interval_seconds: float = 0.5
    login_slot_retry_seconds: float = 5.0
    transient_retry_seconds: float = 30.0

    # Health & circuit breaker
    breaker_failure_threshold: int = 3
    breaker_window_seconds: int = 600
    breaker_penalty_seconds: float = 120.0
    health_window_size: int = 20
    health_min_samples: int = 10
    health_high_failure_rate: float = 0.5
    health_low_failure_rate: float = 0.2
    base_admissions_per_minute: int = 10
    min_admissions_per_minute: int = 3

    # Scheduler
    backoff_base_seconds: float = 60.0
    backoff_max_seconds: float = 900.0
    idle_sleep_seconds: float = 3600.0
    min_sleep_seconds: float = 1.0
    daily_renewal_hour: int | None = None  # Ex.: 6 -> verificação proativa às 06:00 (timezone)

    # Cache-aside de snapshots
    snapshot_fresh_seconds: float = 60.0
    snapshot_stale_max_seconds: float = 7200.0
    background_refresh_jitter_seconds: float = 5.0

    # Firestore (diretório de admins e dashboard)
    firestore_project_id: str | None = None
    firestore_database_id: str = "(default)"
    admins_collection: str = "admins"
    dashboard_collection: str = "admins"

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local")

    def validate_state_store_config(self) -> list[str]:
        """Valida backend do state store por ambiente.

        Em staging/prod, memory é proibido (locks precisam ser compartilhados
        entre instâncias). Retorna lista de erros (vazia = OK).
        """
        errors: list[str] = []
        backend = self.state_store_backend.lower()

        valid_backends = {"memory", "redis"}
        if backend not in valid_backends:
            errors.append(
                f"STATE_STORE_BACKEND '{backend}' inválido. Valores válidos: {valid_backends}"
            )

        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append(
                "STATE_STORE_BACKEND=memory é proibido em staging/production. "
                "Configure 'redis' para locks distribuídos."
            )

        if backend == "redis" and not self.redis_url:
            errors.append("STATE_STORE_BACKEND=redis requer REDIS_URL configurado")

        return errors

    def validate_renewal_policy(self) -> list[str]:
        """Valida limites da política de renovação."""
        errors: list[str] = []
        if not 0 < self.renewal_buffer_ratio < 1:
            errors.append("RENEWAL_BUFFER_RATIO deve estar entre 0 e 1")
        if self.renewal_buffer_min_seconds > self.renewal_buffer_max_seconds:
            errors.append("RENEWAL_BUFFER_MIN_SECONDS deve ser <= RENEWAL_BUFFER_MAX_SECONDS")
        if self.min_refresh_lead_seconds <= 0:
            errors.append("MIN_REFRESH_LEAD_SECONDS deve ser > 0")
        if self.max_concurrent_refreshes < 1 or self.max_concurrent_logins < 1:
            errors.append("Concorrência máxima deve ser >= 1")
        if self.refresh_lock_ttl_seconds < self.login_slot_wait_seconds:
            errors.append("REFRESH_LOCK_TTL_SECONDS deve cobrir a espera por slot de login")
        if not self.auth_cookie_names and not self.session_cookie_denylist:
            errors.append("AUTH_COOKIE_NAMES ou SESSION_COOKIE_DENYLIST deve ser configurado")
        return errors

    def validate_health_policy(self) -> list[str]:
        """Valida thresholds de health-aware throttling."""
        errors: list[str] = []
        if not 0 <= self.health_low_failure_rate < self.health_high_failure_rate <= 1:
            errors.append("Thresholds de falha devem satisfazer 0 <= low < high <= 1")
        if self.min_admissions_per_minute < 1:
            errors.append("MIN_ADMISSIONS_PER_MINUTE deve ser >= 1")
        if self.min_admissions_per_minute > self.base_admissions_per_minute:
            errors.append("MIN_ADMISSIONS_PER_MINUTE deve ser <= BASE_ADMISSIONS_PER_MINUTE")
        if self.health_min_samples > self.health_window_size:
            errors.append("HEALTH_MIN_SAMPLES deve ser <= HEALTH_WINDOW_SIZE")
        if self.daily_renewal_hour is not None and not 0 <= self.daily_renewal_hour <= 23:
            errors.append("DAILY_RENEWAL_HOUR deve estar entre 0 e 23")
        return errors

    def validate_firestore_config(self) -> list[str]:
        """Valida Firestore (diretório de admins é obrigatório fora de dev)."""
        errors: list[str] = []
        if (self.is_staging or self.is_production) and not self.firestore_project_id:
            errors.append("FIRESTORE_PROJECT_ID obrigatório em staging/production")
        return errors

    def validate_all(self) -> list[str]:
        """Agrega todas as validações."""
        return (
            self.validate_state_store_config()
            + self.validate_renewal_policy()
            + self.validate_health_policy()
            + self.validate_firestore_config()
        )

    def model_post_init(self, __context: Any) -> None:
        """Valida configuração em staging/production (fail-closed).

        Em development apenas registra o ambiente; erros de configuração
        em staging/prod interrompem o startup.
        """
        logger: logging.Logger = get_logger(__name__)

        if self.is_development:
            logger.info(
                "Usando configuração de development",
                extra={"environment": self.environment},
            )
            return

        errors = self.validate_all()
        if errors and (self.is_staging or self.is_production):
            logger.error(
                "Validação de configuração falhou",
                extra={"errors": errors, "environment": self.environment},
            )
            raise RuntimeError(f"Configuração inválida: {'; '.join(errors)}")

        logger.info(
            "Configuração validada",
            extra={"environment": self.environment, "warnings": errors},
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna uma instância cacheada de Settings."""
    return Settings()
