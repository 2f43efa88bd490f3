# mockoauth/db/schemas/tokens.py
from pydantic import BaseModel


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | float
    scope: str


class IssuedTokenEntry(BaseModel):
    index: int
    token: str
    issuedAt: str | None
    expiresAt: str | None
    active: bool
    isCurrent: bool


class TokenListing(BaseModel):
    client_id: str
    tokenHits: int = 0
    tokenRotations: int = 0
    currentToken: str | None = None
    tokenExpiresAt: str | None = None
    count: int = 0
    issuedTokens: list[IssuedTokenEntry] = []
