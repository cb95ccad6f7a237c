import hashlib
import secrets
from typing import Iterable, List

from security.context import AuthContext

DEFAULT_ABILITIES = ("*",)


def generate_token() -> str:
    return secrets.token_urlsafe(40)


def hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random bearer tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def namespaced_abilities(context: AuthContext, abilities: Iterable[str] = DEFAULT_ABILITIES) -> List[str]:
    """
    Prefix every ability with the context realm: ``central:<ability>`` or
    ``tenant:<tenant_id>:<ability>``. Abilities arriving already namespaced
    are refused so callers cannot smuggle in another realm's prefix.
    """
    out = []
    for ability in abilities:
        if not isinstance(ability, str) or not ability or ability.startswith(("central:", "tenant:")):
            raise ValueError(f"Invalid ability: {ability!r}")
        out.append(context.namespace(ability))
    return out


def belongs_to(realm: str, abilities: Iterable[str], context: AuthContext) -> bool:
    """A token is only honoured in the realm it was issued for."""
    abilities = list(abilities or [])
    return realm == context.realm and bool(abilities) and all(context.owns(a) for a in abilities)
