"""Configuration management for the FNOL service."""

import os
import yaml
from dataclasses import dataclass, field
from typing import Dict

from .errors import ConfigurationError


@dataclass
class BedrockConfig:
    """AWS Bedrock configuration."""
    model_id: str
    timeout: int
    max_retries: int


@dataclass
class PolicyOracleConfig:
    """Policy validation oracle configuration."""
    mode: str
    url: str
    timeout: int
    default_status: str
    policies: Dict[str, str] = field(default_factory=dict)


@dataclass
class StorageConfig:
    """Object storage configuration."""
    backend: str
    local_dir: str
    public_base_url: str
    s3_bucket: str
    s3_prefix: str
    presign_expiry: int


@dataclass
class DatabaseConfig:
    """Claim record store configuration."""
    backend: str
    path: str


@dataclass
class UploadLimitsConfig:
    """Upload size limits enforced by the web layer."""
    max_file_size_mb: int
    max_total_mb: int
    max_files: int


@dataclass
class SessionConfig:
    """In-process intake session retention."""
    idle_ttl_minutes: int
    terminal_ttl_minutes: int


@dataclass
class InsurerConfig:
    """Insurer dashboard access gate. Placeholder, not a security boundary."""
    access_code: str
    token_ttl_minutes: int


@dataclass
class ReconciliationConfig:
    """Sweep for claims stuck in the submitted state."""
    stale_after_minutes: int
    interval_minutes: int


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    format: str
    file: str


@dataclass
class Config:
    """Main configuration class."""
    aws_region: str
    bedrock: BedrockConfig
    policy_oracle: PolicyOracleConfig
    storage: StorageConfig
    database: DatabaseConfig
    uploads: UploadLimitsConfig
    require_all_answers: bool
    sessions: SessionConfig
    insurer: InsurerConfig
    reconciliation: ReconciliationConfig
    logging: LoggingConfig

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "Config":
        """
        Load configuration from file and environment variables.

        Environment variables override config file values:
        - AWS_REGION
        - BEDROCK_MODEL_ID
        - BEDROCK_TIMEOUT
        - POLICY_ORACLE_MODE
        - POLICY_ORACLE_URL
        - STORAGE_BACKEND
        - PUBLIC_BASE_URL
        - S3_BUCKET
        - DATABASE_BACKEND
        - DATABASE_PATH
        - INSURER_ACCESS_CODE
        - LOG_LEVEL

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            ConfigurationError: If the file is missing or a value is invalid
        """
        if not os.path.exists(config_path):
            raise ConfigurationError.missing(config_path, "Create it from the repository's config.yaml")

        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, config_data: Dict) -> "Config":
        """Build a Config from parsed YAML data, applying environment overrides."""
        aws = config_data.get("aws", {}) or {}
        bedrock = aws.get("bedrock", {}) or {}

        aws_region = os.getenv("AWS_REGION", aws.get("region", "us-east-1"))

        bedrock_config = BedrockConfig(
            model_id=os.getenv("BEDROCK_MODEL_ID", bedrock.get("model_id", "amazon.nova-pro-v1:0")),
            timeout=int(os.getenv("BEDROCK_TIMEOUT", bedrock.get("timeout", 60))),
            max_retries=int(bedrock.get("max_retries", 3))
        )

        oracle = config_data.get("policy_oracle", {}) or {}
        policy_oracle_config = PolicyOracleConfig(
            mode=os.getenv("POLICY_ORACLE_MODE", oracle.get("mode", "local")),
            url=os.getenv("POLICY_ORACLE_URL", oracle.get("url", "")),
            timeout=int(oracle.get("timeout", 10)),
            default_status=oracle.get("default_status", "pending"),
            policies={str(k): str(v) for k, v in (oracle.get("policies") or {}).items()}
        )
        if policy_oracle_config.mode not in ("local", "http"):
            raise ConfigurationError.invalid("policy_oracle.mode", policy_oracle_config.mode, "'local' or 'http'")
        if policy_oracle_config.mode == "http" and not policy_oracle_config.url:
            raise ConfigurationError.missing("policy_oracle.url", "Set POLICY_ORACLE_URL for the http oracle")

        storage = config_data.get("storage", {}) or {}
        storage_config = StorageConfig(
            backend=os.getenv("STORAGE_BACKEND", storage.get("backend", "local")),
            local_dir=storage.get("local_dir", "data/uploads"),
            public_base_url=os.getenv("PUBLIC_BASE_URL", storage.get("public_base_url", "http://localhost:8000/files")),
            s3_bucket=os.getenv("S3_BUCKET", storage.get("s3_bucket", "")),
            s3_prefix=storage.get("s3_prefix", "claim-files"),
            presign_expiry=int(storage.get("presign_expiry", 0))
        )
        if storage_config.backend not in ("local", "s3"):
            raise ConfigurationError.invalid("storage.backend", storage_config.backend, "'local' or 's3'")
        if storage_config.backend == "s3" and not storage_config.s3_bucket:
            raise ConfigurationError.missing("storage.s3_bucket", "Set S3_BUCKET for the s3 backend")

        database = config_data.get("database", {}) or {}
        database_config = DatabaseConfig(
            backend=os.getenv("DATABASE_BACKEND", database.get("backend", "sqlite")),
            path=os.getenv("DATABASE_PATH", database.get("path", "data/claims.db"))
        )
        if database_config.backend not in ("memory", "sqlite"):
            raise ConfigurationError.invalid("database.backend", database_config.backend, "'memory' or 'sqlite'")

        uploads = config_data.get("uploads", {}) or {}
        uploads_config = UploadLimitsConfig(
            max_file_size_mb=int(os.getenv("MAX_FILE_SIZE_MB", uploads.get("max_file_size_mb", 10))),
            max_total_mb=int(os.getenv("MAX_TOTAL_MB", uploads.get("max_total_mb", 50))),
            max_files=int(uploads.get("max_files", 10))
        )

        questionnaire = config_data.get("questionnaire", {}) or {}

        sessions = config_data.get("sessions", {}) or {}
        sessions_config = SessionConfig(
            idle_ttl_minutes=int(sessions.get("idle_ttl_minutes", 240)),
            terminal_ttl_minutes=int(sessions.get("terminal_ttl_minutes", 30))
        )

        insurer = config_data.get("insurer", {}) or {}
        insurer_config = InsurerConfig(
            access_code=os.getenv("INSURER_ACCESS_CODE", insurer.get("access_code", "")),
            token_ttl_minutes=int(insurer.get("token_ttl_minutes", 480))
        )

        reconciliation = config_data.get("reconciliation", {}) or {}
        reconciliation_config = ReconciliationConfig(
            stale_after_minutes=int(reconciliation.get("stale_after_minutes", 60)),
            interval_minutes=int(reconciliation.get("interval_minutes", 0))
        )

        log = config_data.get("logging", {}) or {}
        logging_config = LoggingConfig(
            level=os.getenv("LOG_LEVEL", log.get("level", "INFO")),
            format=log.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            file=log.get("file", "")
        )

        return cls(
            aws_region=aws_region,
            bedrock=bedrock_config,
            policy_oracle=policy_oracle_config,
            storage=storage_config,
            database=database_config,
            uploads=uploads_config,
            require_all_answers=bool(questionnaire.get("require_all_answers", True)),
            sessions=sessions_config,
            insurer=insurer_config,
            reconciliation=reconciliation_config,
            logging=logging_config,
        )
