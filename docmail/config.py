"""Mail engine configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Mail accounts themselves live in the account store, not here.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class SmtpConfig(BaseSettings):
    """Outbound SMTP transport settings."""

    model_config = {"env_prefix": "SMTP_"}

    host: str = Field(default="localhost", description="SMTP server hostname")
    port: int = Field(default=25, description="SMTP server port")
    use_ssl: bool = Field(default=False, description="Connect with implicit TLS")
    starttls: bool = Field(default=False, description="Upgrade the connection with STARTTLS")
    username: str | None = Field(default=None, description="SMTP login username")
    password: SecretStr | None = Field(default=None, description="SMTP login password")
    default_from: str = Field(
        default="noreply@localhost",
        description="Sender used when the caller's address is not honored",
    )
    timeout_seconds: float = Field(default=30.0, description="Socket timeout")


class S3Config(BaseSettings):
    """S3 storage settings for the repository adapter."""

    model_config = {"env_prefix": "S3_"}

    bucket: str = Field(default="docmail", description="S3 bucket name")
    prefix: str = Field(default="repository", description="S3 key prefix for repository nodes")
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint URL (e.g. for MinIO)",
    )
    max_file_size_bytes: int = Field(
        default=50 * 1024 * 1024,
        description="Documents above this size are rejected",
    )


class KafkaConfig(BaseSettings):
    """Kafka settings for the audit sink."""

    model_config = {"env_prefix": "KAFKA_"}

    enabled: bool = Field(default=False, description="Publish audit records to Kafka")
    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Comma-separated Kafka bootstrap servers",
    )
    audit_topic: str = Field(default="mail-audit", description="Topic for audit records")
    producer_acks: str = Field(default="all", description="Producer acknowledgement level")
    producer_compression: str = Field(
        default="gzip",
        description="Compression codec for produced messages",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=5, description="Maximum delivery attempts per record")
    initial_wait_seconds: float = Field(default=1.0, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=60.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class MailEngineConfig(BaseSettings):
    """Root configuration for the mail engine.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "DOCMAIL_"}

    application_url: str = Field(
        default="http://localhost:8080/docmail/",
        description="Base URL used when rewriting internal links in outbound mail",
    )
    mail_root: str = Field(default="/mail", description="Root folder of per-user mail")
    inbox_name: str = Field(default="Inbox", description="Compatibility-mode inbox folder")
    send_mail_from_user: bool = Field(
        default=False,
        description="Honor the caller-supplied From address on outbound mail",
    )
    mailer_name: str = Field(default="docmail", description="Value of the X-Mailer header")
    message_id_prefix: str = Field(default="docmail", description="Prefix of X-Message-Id")
    database_url: str = Field(
        default="sqlite+aiosqlite:///docmail.db",
        description="SQLAlchemy URL of the account store",
    )
    imap_timeout_seconds: float = Field(default=60.0, description="Mailbox socket timeout")
    log_json: bool = Field(default=True, description="Emit JSON log lines")
    log_level: str = Field(default="INFO", description="Root log level")

    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    s3: S3Config = Field(default_factory=S3Config)
    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
