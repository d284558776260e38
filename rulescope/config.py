"""
RuleScope Configuration — pydantic-settings based.

All settings are read from environment variables or .env file.
Provider credentials are optional at startup; a missing key surfaces as a
provider failure on the first model call that needs it.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application-wide settings sourced from environment variables."""

    # ── Providers ──
    primary_provider: str = Field(default="groq", description="Primary model provider")
    primary_model: str = Field(
        default="moonshotai/kimi-k2-instruct-0905",
        description="Model identifier used for primary calls",
    )
    fallback_provider: str = Field(default="bedrock", description="Fallback model provider")
    fallback_model: str = Field(
        default="us.amazon.nova-lite-v1:0",
        description="Model identifier used for the single fallback hop",
    )
    groq_api_key: str = Field(default="", description="Groq API key")
    aws_default_region: str = Field(default="us-east-1", description="Bedrock region")
    aws_bearer_token_bedrock: str = Field(
        default="", description="Bedrock bearer token; boto3 credentials are used when empty"
    )

    # ── LLM ──
    llm_timeout: int = Field(default=60, description="LLM request timeout in seconds")
    llm_temperature: float = Field(default=0.0, description="LLM temperature")
    llm_max_tokens: int = Field(default=8192, description="Max output tokens per call")

    # ── Rules ──
    max_rules: int = Field(default=10, description="Max rules per analysis when limited")
    rules_unlimited: bool = Field(
        default=False, description="Unlimited-capacity deployment: skip the rule cap"
    )

    # ── Pull-request chunking ──
    chunk_usage_percentage: int = Field(
        default=60, gt=0, le=100, description="Share of the model token limit used per chunk"
    )
    tokenizer_encoding: str = Field(
        default="cl100k_base",
        description="tiktoken encoding used for models tiktoken does not know",
    )
    default_model_token_limit: int = Field(
        default=64_000, description="Token limit for models without an explicit entry"
    )
    token_limits_by_model: dict[str, int] = Field(
        default={
            "moonshotai/kimi-k2-instruct-0905": 60_000,
            "us.amazon.nova-lite-v1:0": 60_000,
            "llama-3.1-8b-instant": 8_000,
        },
        description="Per-model token limits used to size chunks",
    )

    # ── Pipeline stages ──
    guardian_enabled: bool = Field(
        default=False, description="Run the guardian validation pass on generated suggestions"
    )
    pr_group_duplicates: bool = Field(
        default=False,
        description="Consolidate several suggestions for the same pull-request rule into one",
    )
    link_cache_enabled: bool = Field(
        default=False, description="Memoize rule lookups within one linking pass"
    )

    # ── Links ──
    web_base_url: str = Field(default="", description="Base URL of the settings web app")

    # ── Audit ──
    audit_log_path: str = Field(
        default="audit.jsonl", description="Path to JSON-lines audit log file"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance imported by other modules
settings = Settings()
