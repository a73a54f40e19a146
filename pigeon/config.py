"""Configuration management for the Pigeon SMS wallet service."""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 8000
    host: str = "0.0.0.0"

    # Intent classifier (Gemini)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    classifier_timeout: float = 20.0

    # httpSMS gateway
    httpsms_api_key: Optional[str] = None
    httpsms_owner_phone: Optional[str] = None
    httpsms_api_url: str = "https://api.httpsms.com/v1/messages/send"
    httpsms_webhook_signing_key: Optional[str] = None

    # Algorand (chain A)
    algod_server: str = "https://testnet-api.algonode.cloud"
    algod_token: str = ""
    algorand_indexer_server: str = "https://testnet-idx.algonode.cloud"
    algorand_explorer_base: str = "https://testnet.explorer.perawallet.app/tx"
    algorand_admin_private_key: Optional[str] = None

    # Solana (chain B)
    solana_rpc_url: str = "https://api.devnet.solana.com"
    solana_explorer_base: str = "https://explorer.solana.com/tx"
    solana_admin_private_key: Optional[str] = None

    # Account store
    account_store_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Message pipeline
    session_ttl_seconds: float = 300.0
    dedup_ttl_seconds: float = 300.0
    security_warning_delay_seconds: float = 2.0
    fund_cooldown_seconds: float = 24 * 60 * 60
    transaction_history_limit: int = 5
    default_chain: str = "algorand"

    # Observability
    otlp_endpoint: Optional[str] = None
    enable_console_telemetry: bool = False

    # Logging configuration
    log_level: str = "INFO"

    @field_validator('account_store_backend')
    @classmethod
    def validate_account_store_backend(cls, v):
        if v not in ("memory", "supabase"):
            raise ValueError('ACCOUNT_STORE_BACKEND must be "memory" or "supabase"')
        return v

    @field_validator('default_chain')
    @classmethod
    def validate_default_chain(cls, v):
        if v not in ("algorand", "solana"):
            raise ValueError('DEFAULT_CHAIN must be "algorand" or "solana"')
        return v

    @field_validator(
        'session_ttl_seconds',
        'dedup_ttl_seconds',
        'fund_cooldown_seconds',
        'classifier_timeout'
    )
    @classmethod
    def validate_positive_window(cls, v):
        if v <= 0:
            raise ValueError('Time windows must be positive')
        return v

    @field_validator('security_warning_delay_seconds')
    @classmethod
    def validate_warning_delay(cls, v):
        if v < 0:
            raise ValueError('SECURITY_WARNING_DELAY_SECONDS cannot be negative')
        return v

    @field_validator('transaction_history_limit')
    @classmethod
    def validate_history_limit(cls, v):
        if not 1 <= v <= 50:
            raise ValueError('TRANSACTION_HISTORY_LIMIT must be between 1 and 50')
        return v


# Global settings instance
settings = Settings()
