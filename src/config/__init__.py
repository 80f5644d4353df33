"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/taskboard",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Scheduled Jobs ==========
    scheduler_enabled: bool = Field(
        default=True,
        description="Run breach detection, reassignment, automation and reports on a schedule"
    )
    breach_check_interval_minutes: int = Field(
        default=15,
        description="Minutes between breach detection scans",
        ge=1
    )
    reassignment_interval_minutes: int = Field(
        default=15,
        description="Minutes between breach reassignment sweeps",
        ge=1
    )
    automation_interval_minutes: int = Field(
        default=60,
        description="Minutes between automation rule sweeps",
        ge=1
    )
    report_hour_utc: int = Field(
        default=0,
        description="Hour of day (UTC) for the daily SLA report",
        ge=0,
        le=23
    )
    job_max_concurrency: int = Field(
        default=5,
        description="Max tickets processed in parallel within one job run",
        ge=1,
        le=50
    )

    # ========== Assignment ==========
    assignment_score_threshold: int = Field(
        default=50,
        description="Minimum suitability score for automatic assignment"
    )
    automation_rules_path: Path = Field(
        default=Path("automation_rules.yaml"),
        description="Path to automation rules YAML file"
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="HTTP endpoint of the mail relay used for notifications"
    )
    notification_sender: str = Field(
        default="support@example.com",
        description="From address for outgoing notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification transport calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TicketPriority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class BreachType(str, Enum):
    """Types of SLA clocks that can be breached."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class BreachCloseReason(str, Enum):
    """Why an open breach episode was closed."""
    RESOLVED = "resolved"
    REASSIGNED = "reassigned"
    SLA_REMOVED = "sla_removed"


class AgentRole(str, Enum):
    """User roles known to the engine."""
    AGENT = "agent"
    TECH_SUPPORT = "tech_support"
    MANAGER = "manager"
    ADMIN = "admin"


class AutomationRole(str, Enum):
    """Role targets automation rules can assign or escalate to."""
    SENIOR_AGENT = "senior_agent"
    TECH_SUPPORT_TEAM = "tech_support_team"
    MANAGER = "manager"


# ========== Lists for validation ==========

ACTIVE_STATUSES = [TicketStatus.TODO, TicketStatus.IN_PROGRESS]
VALID_BREACH_TYPES = [BreachType.RESPONSE, BreachType.RESOLUTION]
