from functools import lru_cache
from typing import Annotated, Dict, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_pairs(value: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for chunk in value.split(","):
        key, sep, item = chunk.strip().partition(":")
        if sep and key.strip() and item.strip():
            pairs[key.strip()] = item.strip()
    return pairs


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="RavGateway Payments")
    app_url: str = Field(default="https://www.ravgateway.com")
    cors_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )
    base_rpc_url: AnyHttpUrl = Field(
        default="https://mainnet.base.org"
    )
    celo_rpc_url: AnyHttpUrl = Field(
        default="https://forno.celo.org"
    )
    rpc_timeout: float = Field(
        default=10.0
    )
    # sha256(api key) hex digest -> merchant id, e.g. "3f9a...:merchant_1"
    api_keys: Annotated[Dict[str, str], NoDecode] = Field(
        default_factory=dict
    )
    # merchant id -> wallet address, e.g. "merchant_1:0xabc..."
    merchant_wallets: Annotated[Dict[str, str], NoDecode] = Field(
        default_factory=dict
    )

    model_config = SettingsConfigDict(env_prefix="RAV_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("api_keys", "merchant_wallets", mode="before")
    def _split_mapping(cls, value):
        if isinstance(value, str):
            return _split_pairs(value)
        return value

    def rpc_url_for(self, network: str) -> str | None:
        url = getattr(self, f"{network}_rpc_url", None)
        return str(url).rstrip("/") if url else None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
