# core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import ClassVar, Optional, List


class Settings(BaseSettings):
    """
    Centralized worker configuration.
    Grouped logically for readability; loaded from the environment or .env.
    """

    # ------------------------------------------------------------
    # Project / Runtime
    # ------------------------------------------------------------
    PROJECT_NAME: str = "Inference Worker"
    DEBUG: bool = False

    # ------------------------------------------------------------
    # AWS Core
    # ------------------------------------------------------------
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_SESSION_TOKEN: Optional[str] = None

    # ------------------------------------------------------------
    # Inference (Bedrock Runtime)
    # ------------------------------------------------------------
    BEDROCK_MODEL_ID: Optional[str] = Field(
        default=None,
        description="Text-completion model that accepts the [INST] prompt format"
    )
    MAX_TOKENS: int = 250
    TEMPERATURE: float = 0.8
    TOP_P: float = 0.5
    TOP_K: int = 80
    STOP_SEQUENCES: List[str] = ["</s>"]

    """
    System prompt rendered into the <<SYS>> block of the first turn.
    Empty string disables the block.
    """
    SYSTEM_PROMPT: str = ""

    INFERENCE_READ_TIMEOUT_SECS: int = 60
    INFERENCE_CONNECT_TIMEOUT_SECS: int = 10

    # ------------------------------------------------------------
    # Redis Configuration
    # ------------------------------------------------------------

    """
    Redis connection settings for conversation context storage
    """
    REDIS_HOST: Optional[str] = Field(
        default=None,
        description="Redis server hostname (ElastiCache endpoint in production)"
    )
    REDIS_PORT: int = Field(
        default=6379,
        description="Redis server port"
    )
    REDIS_DB: int = Field(
        default=0,
        description="Redis database number (0-15)"
    )
    REDIS_PASSWORD: Optional[str] = Field(
        default=None,
        description="Redis password (optional, not needed with security groups)"
    )
    REDIS_SSL: bool = Field(
        default=False,
        description="Use TLS/SSL for Redis connection (required for ElastiCache with encryption)"
    )
    REDIS_SOCKET_TIMEOUT: int = Field(
        default=5,
        description="Socket timeout in seconds"
    )
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(
        default=5,
        description="Socket connect timeout in seconds"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=50,
        description="Maximum connections in the pool"
    )

    # ------------------------------------------------------------
    # Conversation Context
    # ------------------------------------------------------------
    MAX_CONTEXT_TURNS: int = Field(
        default=20,
        description="Maximum (query, response) turns kept per user; oldest evicted first"
    )
    MAX_CONTEXT_CHARS: int = Field(
        default=8000,
        description="Maximum total characters of stored turns per user"
    )
    CONVERSATION_TTL: Optional[int] = Field(
        default=None,
        description="Optional expiry in seconds; None keeps context indefinitely"
    )

    # ------------------------------------------------------------
    # Messaging (SQS)
    # ------------------------------------------------------------
    SQS_JOB_QUEUE_URL: Optional[str] = None
    SQS_RESULT_QUEUE_URL: Optional[str] = None
    SQS_REGION: str = "us-east-1"
    SQS_WAIT_TIME_SECS: int = 20
    SQS_MAX_MESSAGES: int = 10

    # ------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------
    WORKER_MAX_CONCURRENCY: int = 8
    JOB_TIMEOUT_SECS: float = 120.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    """
    Values the worker cannot start without
    """
    REQUIRED_SETTINGS: ClassVar[List[str]] = [
        "SQS_JOB_QUEUE_URL",
        "SQS_RESULT_QUEUE_URL",
        "BEDROCK_MODEL_ID",
        "REDIS_HOST",
    ]

    def missing_required(self) -> List[str]:
        """Names of required settings that are unset or blank."""
        return [name for name in self.REQUIRED_SETTINGS if not getattr(self, name, None)]

    @property
    def is_fifo_result_queue(self) -> bool:
        return bool(self.SQS_RESULT_QUEUE_URL) and self.SQS_RESULT_QUEUE_URL.endswith(".fifo")


settings = Settings()
