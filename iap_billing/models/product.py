"""Product and store configuration models.

Models from store.yaml configuration.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_AUTH_ENDPOINT = "https://pardakht.cafebazaar.ir/devapi/v2/auth/token/"
DEFAULT_STATUS_ENDPOINT = "https://pardakht.cafebazaar.ir/devapi/v2/api/validate"


class ProductType(str, Enum):
    """Entitlement semantics of a product."""

    CONSUMABLE = "consumable"  # may be bought again once consumed
    NON_CONSUMABLE = "non_consumable"


class ProductDefinition(BaseModel):
    """Catalog entry. ``price`` stays empty until prices are loaded from the bridge."""

    id: str = Field(..., min_length=1, description="Product ID as registered with the store")
    type: ProductType = Field(..., description="Product type: 'consumable' or 'non_consumable'")
    price: Optional[str] = Field(None, description="Normalized price digits, e.g. '12000'")

    @property
    def is_consumable(self) -> bool:
        return self.type == ProductType.CONSUMABLE

    class Config:
        json_schema_extra = {
            "example": {
                "id": "coins_500",
                "type": "consumable",
                "price": "12000",
            }
        }


class ValidationSettings(BaseModel):
    """Server-side purchase validation settings."""

    enabled: bool = Field(default=False, description="Validate purchases with the developer API")
    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: str = Field(default="", description="OAuth client secret")
    refresh_token: str = Field(default="", description="Long-lived refresh token")
    auth_endpoint: str = Field(default=DEFAULT_AUTH_ENDPOINT, description="Token exchange URL")
    status_endpoint: str = Field(default=DEFAULT_STATUS_ENDPOINT, description="Purchase status base URL")

    @field_validator("client_id", "client_secret", "refresh_token", mode="before")
    @classmethod
    def strip_whitespace(cls, value):
        # Credentials are usually pasted from the developer console
        if isinstance(value, str):
            return "".join(value.split())
        return value

    @model_validator(mode="after")
    def require_credentials_when_enabled(self) -> "ValidationSettings":
        if self.enabled:
            missing = [
                name
                for name in ("client_id", "client_secret", "refresh_token")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"validation is enabled but {', '.join(missing)} not set")
        return self


class TimeoutSettings(BaseModel):
    """Upper bounds for bridge waits and HTTP calls."""

    bridge_seconds: float = Field(default=120.0, gt=0, description="Max wait for a bridge reply")
    http_seconds: float = Field(default=15.0, gt=0, description="Max duration of one HTTP call")


class StoreConfig(BaseModel):
    """Complete store.yaml configuration."""

    products: list[ProductDefinition] = Field(default_factory=list, description="Product catalog")
    public_key: str = Field(default="", description="RSA public key from the store console")
    payload: str = Field(default="", description="Developer payload attached to purchases")
    application_id: Optional[str] = Field(
        None, description="Package name used for validation; defaults to the purchase's package"
    )
    dummy_response_in_unsupported_environment: bool = Field(
        default=False, description="Synthesize successful results where no bridge exists"
    )
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)

    @field_validator("public_key", mode="before")
    @classmethod
    def strip_key_whitespace(cls, value):
        if isinstance(value, str):
            return "".join(value.split())
        return value
