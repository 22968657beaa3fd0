import uuid
from dataclasses import dataclass, field
from datetime import datetime

from keypool.credentials.service import mask_secret


@dataclass(eq=False)
class CredentialHandle:
    """
    A leased credential. Holds the decrypted secret in memory for the length
    of one external call; the secret is kept out of repr() and never stored.
    """
    credential_id: uuid.UUID
    service_name: str
    key_name: str
    secret: str = field(repr=False)
    is_trial: bool
    acquired_at: datetime
    lease_id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def masked_secret(self) -> str:
        return mask_secret(self.secret)
