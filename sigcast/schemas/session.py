"""Stream session record."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, InstanceOf

from sigcast.domain.crypto.signer import KeyPair


class StreamSession(BaseModel):
    """Trust scope of one producer stream.

    Built once at issuance and never mutated; the registry replaces or drops
    whole records instead.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    session_id: str = Field(..., description="Opaque, path-safe stream identifier")
    key_pair: InstanceOf[KeyPair] = Field(..., repr=False)
    issued_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at
