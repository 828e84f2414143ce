# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "ridepool"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Настройки развертывания сервиса."""
    MARKETPLACE_HOST: str = "0.0.0.0"
    MARKETPLACE_PORT: int = 8080


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ridepool"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0
    DATABASE_URL: str | None = None

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "ridepool"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "ridepool.events"

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class StripeSettings(BaseModel):
    """Настройки платёжного провайдера (Stripe)."""
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_PLATFORM_FEE_PCT: float = 0.0
    STRIPE_CURRENCY: str = "cad"
    STRIPE_WEBHOOK_TOLERANCE: int = 300

    @field_validator("STRIPE_PLATFORM_FEE_PCT")
    @classmethod
    def validate_fee_pct(cls, v: float) -> float:
        """Комиссия платформы задаётся долей от 0 до 1."""
        if v < 0 or v > 1:
            raise ValueError("STRIPE_PLATFORM_FEE_PCT должен быть в диапазоне 0..1")
        return v

    @field_validator("STRIPE_CURRENCY")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().lower()


class PricingSettings(BaseModel):
    """Настройки ценообразования мест и тарифа бронирования."""
    JIT_BASE_PRICE_PER_SEAT: float = 20.0
    JIT_WINDOW_HOURS: float = 2.0
    SURGE_WINDOW_HOURS: float = 2.0
    SURGE_MULTIPLIER: float = 1.3
    LONG_DISTANCE_FLOOR_KM: float = 55.0
    LONG_DISTANCE_FLOOR_MAX_SEATS: int = 2
    LONG_DISTANCE_FLOOR_PRICE: float = 20.0
    LONG_DISTANCE_CAP_KM: float = 50.0
    LONG_DISTANCE_CAP_PRICE: float = 15.0
    DISTANCE_PRICE_CAP_PER_KM: float = 0.3
    PAYMENT_BASE_FARE_CENTS: int = 0
    PAYMENT_PER_KM_RATE_CENTS: int = 0
    PAYMENT_SERVICE_FEE_CENTS: int = 0
    PAYMENT_TAX_BPS: int = 0
    FIXED_ROUTE_CACHE_TTL: int = 300

    @field_validator("JIT_BASE_PRICE_PER_SEAT")
    @classmethod
    def validate_jit_price(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("JIT_BASE_PRICE_PER_SEAT должен быть больше нуля")
        return v

    @field_validator(
        "PAYMENT_BASE_FARE_CENTS",
        "PAYMENT_PER_KM_RATE_CENTS",
        "PAYMENT_SERVICE_FEE_CENTS",
        "PAYMENT_TAX_BPS",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Параметры тарифа не могут быть отрицательными."""
        if v < 0:
            raise ValueError("Параметры тарифа должны быть неотрицательными")
        return v


class DispatchSettings(BaseModel):
    """Настройки интеграции с внешним диспетчером."""
    DISPATCH_BASE_URL: str = ""
    API_TO_DISPATCH_SECRET: str = ""
    DISPATCH_TO_API_SECRET: str = ""
    DISPATCH_TIMEOUT: float = 10.0

    @property
    def enabled(self) -> bool:
        """Диспетчер настроен, если задан базовый URL."""
        return bool(self.DISPATCH_BASE_URL)


class RateLimitSettings(BaseModel):
    """Настройки ограничения частоты запросов."""
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_REQUESTS: int = 120


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        config_data = load_config_json()

        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        filtered_data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=filtered_data.get("PROJECT_NAME", "ridepool"),
                VERSION=filtered_data.get("VERSION", "1.0.0"),
                DEBUG=filtered_data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", filtered_data.get("ENVIRONMENT", "development")),
            ),
            deployment=DeploymentSettings(
                MARKETPLACE_HOST=os.getenv("MARKETPLACE_HOST", filtered_data.get("MARKETPLACE_HOST", "0.0.0.0")),
                MARKETPLACE_PORT=int(os.getenv("PORT", filtered_data.get("MARKETPLACE_PORT", 8080))),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=filtered_data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=filtered_data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=filtered_data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=filtered_data.get("LOG_FORMAT", "json"),
                LOG_MAX_BYTES=filtered_data.get("LOG_MAX_BYTES", 10485760),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", filtered_data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", filtered_data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", filtered_data.get("DB_NAME", "ridepool")),
                DB_USER=os.getenv("DB_USER", filtered_data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", filtered_data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=filtered_data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=filtered_data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=filtered_data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=filtered_data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=filtered_data.get("DB_RETRY_DELAY", 1.0),
                DATABASE_URL=os.getenv("DATABASE_URL", filtered_data.get("DATABASE_URL")),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", filtered_data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", filtered_data.get("REDIS_PORT", 6379))),
                REDIS_DB=filtered_data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", filtered_data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=filtered_data.get("REDIS_NAMESPACE", "ridepool"),
                REDIS_MAX_CONNECTIONS=filtered_data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", filtered_data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", filtered_data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", filtered_data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", filtered_data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=filtered_data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=filtered_data.get("RABBITMQ_EXCHANGE", "ridepool.events"),
            ),
            stripe=StripeSettings(
                STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY", filtered_data.get("STRIPE_SECRET_KEY", "")),
                STRIPE_WEBHOOK_SECRET=os.getenv(
                    "STRIPE_WEBHOOK_SECRET", filtered_data.get("STRIPE_WEBHOOK_SECRET", "")
                ),
                STRIPE_PLATFORM_FEE_PCT=float(
                    os.getenv("STRIPE_PLATFORM_FEE_PCT", filtered_data.get("STRIPE_PLATFORM_FEE_PCT", 0.0))
                ),
                STRIPE_CURRENCY=filtered_data.get("STRIPE_CURRENCY", "cad"),
                STRIPE_WEBHOOK_TOLERANCE=filtered_data.get("STRIPE_WEBHOOK_TOLERANCE", 300),
            ),
            pricing=PricingSettings(
                JIT_BASE_PRICE_PER_SEAT=float(
                    os.getenv("JIT_BASE_PRICE_PER_SEAT", filtered_data.get("JIT_BASE_PRICE_PER_SEAT", 20.0))
                ),
                JIT_WINDOW_HOURS=filtered_data.get("JIT_WINDOW_HOURS", 2.0),
                SURGE_WINDOW_HOURS=filtered_data.get("SURGE_WINDOW_HOURS", 2.0),
                SURGE_MULTIPLIER=filtered_data.get("SURGE_MULTIPLIER", 1.3),
                LONG_DISTANCE_FLOOR_KM=filtered_data.get("LONG_DISTANCE_FLOOR_KM", 55.0),
                LONG_DISTANCE_FLOOR_MAX_SEATS=filtered_data.get("LONG_DISTANCE_FLOOR_MAX_SEATS", 2),
                LONG_DISTANCE_FLOOR_PRICE=filtered_data.get("LONG_DISTANCE_FLOOR_PRICE", 20.0),
                LONG_DISTANCE_CAP_KM=filtered_data.get("LONG_DISTANCE_CAP_KM", 50.0),
                LONG_DISTANCE_CAP_PRICE=filtered_data.get("LONG_DISTANCE_CAP_PRICE", 15.0),
                DISTANCE_PRICE_CAP_PER_KM=filtered_data.get("DISTANCE_PRICE_CAP_PER_KM", 0.3),
                PAYMENT_BASE_FARE_CENTS=int(
                    os.getenv("PAYMENT_BASE_FARE_CENTS", filtered_data.get("PAYMENT_BASE_FARE_CENTS", 0))
                ),
                PAYMENT_PER_KM_RATE_CENTS=int(
                    os.getenv("PAYMENT_PER_KM_RATE_CENTS", filtered_data.get("PAYMENT_PER_KM_RATE_CENTS", 0))
                ),
                PAYMENT_SERVICE_FEE_CENTS=int(
                    os.getenv("PAYMENT_SERVICE_FEE_CENTS", filtered_data.get("PAYMENT_SERVICE_FEE_CENTS", 0))
                ),
                PAYMENT_TAX_BPS=int(os.getenv("PAYMENT_TAX_BPS", filtered_data.get("PAYMENT_TAX_BPS", 0))),
                FIXED_ROUTE_CACHE_TTL=filtered_data.get("FIXED_ROUTE_CACHE_TTL", 300),
            ),
            dispatch=DispatchSettings(
                DISPATCH_BASE_URL=os.getenv("DISPATCH_BASE_URL", filtered_data.get("DISPATCH_BASE_URL", "")),
                API_TO_DISPATCH_SECRET=os.getenv(
                    "API_TO_DISPATCH_SECRET", filtered_data.get("API_TO_DISPATCH_SECRET", "")
                ),
                DISPATCH_TO_API_SECRET=os.getenv(
                    "DISPATCH_TO_API_SECRET", filtered_data.get("DISPATCH_TO_API_SECRET", "")
                ),
                DISPATCH_TIMEOUT=filtered_data.get("DISPATCH_TIMEOUT", 10.0),
            ),
            rate_limit=RateLimitSettings(
                RATE_LIMIT_ENABLED=filtered_data.get("RATE_LIMIT_ENABLED", True),
                RATE_LIMIT_WINDOW_SECONDS=filtered_data.get("RATE_LIMIT_WINDOW_SECONDS", 60),
                RATE_LIMIT_MAX_REQUESTS=filtered_data.get("RATE_LIMIT_MAX_REQUESTS", 120),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
