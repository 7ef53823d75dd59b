"""Sign-in handshake Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

WALLET_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"


class NonceRequest(BaseModel):
    """Request for a sign-in challenge."""

    address: str = Field(
        ...,
        pattern=WALLET_ADDRESS_PATTERN,
        description="Ethereum wallet address (0x + 40 hex characters, any case)",
    )


class NonceResponse(BaseModel):
    """Challenge the wallet must embed in its SIWE message."""

    nonce: str = Field(..., description="Single-use nonce, valid for ten minutes")


class VerifyRequest(BaseModel):
    """Signed SIWE message submitted to complete sign-in."""

    message: str = Field(..., min_length=1, description="Full EIP-4361 message text")
    signature: str = Field(..., min_length=1, description="Hex personal_sign signature")


class UserPublic(BaseModel):
    """Public view of an account."""

    id: str
    address: str = Field(..., validation_alias="wallet_address")
    display_name: str | None = None
    role: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class VerifyResponse(BaseModel):
    """Bearer token issued after a successful sign-in."""

    token: str = Field(..., description="JWT bearer token")
    user: UserPublic


class MeResponse(BaseModel):
    user: UserPublic


class LogoutResponse(BaseModel):
    success: bool
    message: str
