"""Identity key derivation -- (network origin, account) pair."""
import hashlib
from dataclasses import dataclass
from typing import Optional

from loginguard.domain.errors import InvalidIdentity


@dataclass(frozen=True)
class Identity:
    origin: str
    account: Optional[str] = None

    @property
    def key(self) -> str:
        """Stable SHA-256 hex digest of the pair.

        Origins may contain ':' (IPv6), so the components are length-prefixed
        before hashing to keep distinct pairs from colliding.
        """
        account = self.account if self.account is not None else ""
        marker = "a" if self.account is not None else "-"
        material = f"{len(self.origin)}:{self.origin}|{marker}{len(account)}:{account}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()


def normalize_account(account) -> Optional[str]:
    """Lower-case and trim an account identifier. Blank means no account."""
    if account is None:
        return None
    if not isinstance(account, str):
        raise InvalidIdentity("Account identifier must be a string.")
    normalized = account.strip().lower()
    return normalized or None


def derive_identity(origin, account=None) -> Identity:
    """Build an Identity, refusing to bucket callers with no origin."""
    if not isinstance(origin, str) or not origin.strip():
        raise InvalidIdentity("A network origin identifier is required.")
    return Identity(origin=origin.strip(), account=normalize_account(account))
