from dataclasses import dataclass

from gigcalc.core.modules.account.models import Account
from gigcalc.core.modules.session.models import Session


@dataclass(frozen=True)
class AuthContext:
    """Resolved identity of one request, passed explicitly to every operation."""

    account: Account
    session: Session
    renewed: bool = False  # Session lifetime was extended while authenticating this request
