"""Ledger configuration."""

from pydantic import BaseModel, Field, field_validator

from utils.timezone import to_local, now_utc


class LedgerConfig(BaseModel):
    """
    Invoice ledger configuration.

    Secrets (database URL, email gateway credentials) live in Vault, not here.
    """

    default_currency: str = Field(
        default="USD",
        description="Currency for invoices created without one",
        min_length=3,
        max_length=3,
    )
    payment_terms_days: int = Field(
        default=30,
        description="Days from issue to due date when no due date is given",
        ge=0,
        le=365,
    )
    timezone: str = Field(
        default="UTC",
        description="Business timezone in which due dates are compared",
    )
    invoice_number_prefix: str = Field(
        default="INV",
        description="Prefix for generated invoice numbers",
        min_length=1,
        max_length=10,
    )
    max_conflict_retries: int = Field(
        default=3,
        description="Attempts at recording a payment when the invoice changes underneath",
        ge=1,
        le=10,
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        to_local(now_utc(), v)  # raises ValueError on unknown zone
        return v

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()
