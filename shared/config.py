"""
Shared configuration management for the Quizblog API Gateway.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class UpstreamTarget:
    """A named backend service and the base URL it is reachable at."""
    name: str
    base_url: str


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Remote cache
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0)
    redis_timeout_seconds: float = Field(default=2.0)
    redis_reconnect_interval: float = Field(default=30.0)

    # Observability
    health_check_timeout: float = Field(default=5.0)


class GatewayConfig(BaseConfig):
    """Gateway configuration: upstream services, cache tuning, realtime limits."""

    service_name: str = "gateway"
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000)
    client_url: Optional[str] = Field(default=None)

    # Upstream services
    users_service_url: str = Field(default="http://localhost:5001")
    quizzing_service_url: str = Field(default="http://localhost:5002")
    posts_service_url: str = Field(default="http://localhost:5003")
    schools_service_url: str = Field(default="http://localhost:5004")
    courses_service_url: str = Field(default="http://localhost:5005")
    scores_service_url: str = Field(default="http://localhost:5006")
    downloads_service_url: str = Field(default="http://localhost:5007")
    contacts_service_url: str = Field(default="http://localhost:5008")
    feedbacks_service_url: str = Field(default="http://localhost:5009")
    comments_service_url: str = Field(default="http://localhost:5010")
    statistics_service_url: str = Field(default="http://localhost:5011")

    # Proxy and aggregation
    upstream_timeout_seconds: float = Field(default=10.0)
    proxy_max_attempts: int = Field(default=3)
    proxy_backoff_seconds: float = Field(default=1.0)

    # Cache
    cache_default_ttl: int = Field(default=300)
    local_cache_max_size: int = Field(default=1000)

    # Realtime
    max_ws_connections: int = Field(default=1000)
    realtime_rate_limit: int = Field(default=100)

    def upstream_targets(self) -> Dict[str, UpstreamTarget]:
        """Static name -> target table built from the configured base URLs."""
        names = (
            "users", "quizzing", "posts", "schools", "courses", "scores",
            "downloads", "contacts", "feedbacks", "comments", "statistics",
        )
        return {
            name: UpstreamTarget(name, getattr(self, f"{name}_service_url").rstrip("/"))
            for name in names
        }

    def cors_origins(self) -> List[str]:
        """Origins allowed for HTTP CORS and the realtime channel."""
        origins = [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8080",
        ]
        if self.client_url:
            origins.append(self.client_url.rstrip("/"))
        return origins


def get_config(**overrides) -> GatewayConfig:
    """Get gateway configuration, optionally overriding individual fields."""
    return GatewayConfig(**overrides)
