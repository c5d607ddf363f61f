"""Relay configuration from the environment.

Values come from process environment variables, then a local ``.env`` file
(variables already set in the environment win).
"""

from __future__ import annotations

from typing import Annotated

from pydantic import Field, PositiveFloat, PositiveInt, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from chatrelay.errors import ConfigError


class RelaySettings(BaseSettings):
    """Immutable settings shared by every relay component."""

    api_url: str = Field("", validation_alias="WHATSAPP_API_URL")
    graph_url: str = Field("https://graph.facebook.com/v19.0", validation_alias="WHATSAPP_GRAPH_URL")
    access_token: str = Field("", validation_alias="WHATSAPP_ACCESS_TOKEN")
    owner_phone_number: str = ""
    verify_token: str = "my_secure_verify_token"
    app_secret: str = Field("", validation_alias="WHATSAPP_APP_SECRET")
    backend_url: str = "http://localhost:5000"
    cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        ("*",), validation_alias="CORS_ALLOWED_ORIGINS"
    )

    request_timeout: PositiveFloat = Field(15.0, validation_alias="PROVIDER_TIMEOUT_SECONDS")
    maintenance_interval: PositiveFloat = Field(300.0, validation_alias="MAINTENANCE_INTERVAL_SECONDS")

    message_template: str = Field("customer_message", validation_alias="CUSTOMER_TEMPLATE_NAME")
    keepalive_template: str = Field("session_keepalive", validation_alias="KEEPALIVE_TEMPLATE_NAME")
    template_language: str = "en_US"

    log_level: str = "INFO"
    port: PositiveInt = 5000

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        origins = tuple(o.strip() for o in value if o and o.strip())
        return origins or ("*",)

    @field_validator("graph_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @property
    def is_configured(self) -> bool:
        """Whether enough provider settings exist to actually send."""
        return bool(self.api_url and self.access_token and self.owner_phone_number)


def load_settings(env_file: str | None = ".env") -> RelaySettings:
    """Build RelaySettings from the environment and ``env_file``.

    Raises:
        ConfigError: a value is present but invalid (non-numeric, not positive)
    """
    try:
        return RelaySettings(_env_file=env_file)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid relay settings: {problems}") from None
