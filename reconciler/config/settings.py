"""
Configuration Management for the Reconciler

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Thresholds that encode the trust hierarchy (auto-validation, AI cap)
live next to the credentials of the services they gate, so an
operator can see every knob in one place.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    # Optional on purpose: a missing key is reported as "AI not configured"
    # at the classifier boundary instead of failing application startup.
    api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=500,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    transactions_sheet_name: str = Field(default="Transactions")
    rules_sheet_name: str = Field(default="ReconciliationRules")
    patterns_sheet_name: str = Field(default="TransactionPatterns")
    categories_sheet_name: str = Field(default="Categories")
    cost_centers_sheet_name: str = Field(default="CostCenters")
    budgets_sheet_name: str = Field(default="Budgets")
    accounts_sheet_name: str = Field(default="Accounts")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class ClassifierSettings(BaseSettings):
    """Thresholds for the rule → pattern → AI classification chain."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFIER_",
        extra="ignore"
    )

    auto_validate_confidence: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Minimum pattern confidence to auto-validate"
    )
    ai_confidence_cap: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="AI suggestions can never exceed this confidence"
    )
    ai_invalid_category_penalty: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Confidence removed when the AI returns an unknown category"
    )
    ai_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        le=120,
        description="Upper bound for one language-model call"
    )
    pattern_confidence_cap: float = Field(
        default=0.99,
        ge=0.0,
        le=1.0,
    )
    min_pattern_length: int = Field(
        default=3,
        ge=1,
        description="Normalized descriptions shorter than this are never learned"
    )


class TransferSettings(BaseSettings):
    """Internal-transfer detection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TRANSFER_",
        extra="ignore"
    )

    window_size: int = Field(
        default=2000,
        ge=2,
        description="How many recent transactions are scanned per run"
    )
    amount_tolerance: float = Field(
        default=0.01,
        ge=0.0,
    )
    max_day_gap: int = Field(
        default=1,
        ge=0,
        description="Maximum calendar days between the two legs"
    )
    update_batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Ids per storage update call"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Backend selection - resolved once in create_app_components()
    storage_backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Where transactions, rules and patterns live"
    )
    ai_backend: Literal["gemini", "disabled"] = Field(
        default="gemini",
        description="Language-model gateway used by the AI classifier"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def classifier(self) -> ClassifierSettings:
        return ClassifierSettings()

    @property
    def transfers(self) -> TransferSettings:
        return TransferSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("gemini", "google_sheets", "classifier", "transfers", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    # A gemini block without a key loads fine but cannot classify
    if results.get("gemini"):
        results["gemini"] = settings.gemini.is_configured
        if not results["gemini"]:
            results["gemini_error"] = "GEMINI_API_KEY is not set"

    return results
