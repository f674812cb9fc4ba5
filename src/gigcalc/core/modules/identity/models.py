"""Identity verified by the external identity provider."""

from pydantic import BaseModel, ConfigDict


class VerifiedIdentity(BaseModel):
    """Profile asserted by the identity provider for one real-world user."""

    model_config = ConfigDict(frozen=True)

    provider: str
    provider_user_id: str  # Stable subject id assigned by the provider
    email: str | None = None
    display_name: str | None = None
    picture_url: str | None = None
