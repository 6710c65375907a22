import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class Identity:
    user_id: str
    anonymous: bool = False


ANONYMOUS = Identity(user_id="", anonymous=True)


class Authenticator(Protocol):
    def verify(self, token: Optional[str]) -> Optional[Identity]:
        ...


class AccessCodeAuthenticator:
    """Accepts a bearer token equal to the configured access code.

    With no access code configured every caller is let in anonymously.
    """

    def __init__(self, access_code: str = ""):
        self._access_code = access_code

    def verify(self, token: Optional[str]) -> Optional[Identity]:
        if not self._access_code:
            return ANONYMOUS
        if not token or not hmac.compare_digest(token, self._access_code):
            return None
        # stable opaque id so stored chats can be scoped to the code holder
        digest = hashlib.sha256(self._access_code.encode("utf-8")).hexdigest()[:16]
        return Identity(user_id=f"code-{digest}")
