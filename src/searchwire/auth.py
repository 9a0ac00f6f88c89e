"""
searchwire Auth — Request Signing Strategies
============================================

A signer receives an outgoing request and returns it, possibly with
authentication evidence added. Strategies are selected once, when the
cluster configuration is resolved:

    config = {"url": "https://es:9200", "username": "u", "password": "p"}
    # -> BasicAuth (default), adds "Authorization: Basic dTpw"

    config = {"url": "http://localhost:9200", "auth": "none"}
    # -> NoAuth

Custom strategies only need a ``sign`` method with the same signature.
They may raise ``AuthError`` to refuse a request. Signing must not do I/O
and must be safe to call from several threads at once.
"""

import base64
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .errors import ConfigError

if TYPE_CHECKING:
    from .config import ClusterConfig

Headers = List[Tuple[str, str]]
SignedRequest = Tuple[str, str, Headers, Optional[bytes]]


@runtime_checkable
class Signer(Protocol):
    """Contract for request signing strategies."""

    def sign(
        self,
        config: "ClusterConfig",
        method: str,
        path: str,
        headers: Headers,
        body: Optional[bytes]
    ) -> SignedRequest:
        ...


class BasicAuth:
    """
    HTTP Basic Auth, if credentials are configured.

    When both ``username`` and ``password`` are non-empty strings, one
    ``Authorization: Basic <base64(username:password)>`` header is appended
    after the existing headers. Otherwise the request is returned untouched,
    so an unauthenticated local cluster keeps working.
    """

    def sign(self, config, method, path, headers, body):
        username = getattr(config, "username", None)
        password = getattr(config, "password", None)

        if not _is_credential(username) or not _is_credential(password):
            return method, path, headers, body

        return method, path, list(headers) + [("Authorization", encode_basic(username, password))], body

    def __repr__(self):
        return "BasicAuth()"


class NoAuth:
    """Never adds authentication headers."""

    def sign(self, config, method, path, headers, body):
        return method, path, headers, body

    def __repr__(self):
        return "NoAuth()"


STRATEGIES: Dict[str, type] = {
    "basic": BasicAuth,
    "none": NoAuth,
}


def encode_basic(username: str, password: str) -> str:
    """Build a Basic ``Authorization`` header value."""
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def resolve_signer(value: Any) -> Signer:
    """
    Turn an ``auth`` configuration value into a signer instance.

    Args:
        value: None (basic auth), a registered strategy name, a signer
            class or a signer instance

    Returns:
        Signer instance

    Raises:
        ConfigError: If the value does not describe a signer
    """
    if value is None:
        return BasicAuth()

    if isinstance(value, str):
        try:
            return STRATEGIES[value.lower()]()
        except KeyError:
            known = ", ".join(sorted(STRATEGIES))
            raise ConfigError(f"unknown auth strategy {value!r} (known: {known})") from None

    if isinstance(value, type):
        value = value()

    if not callable(getattr(value, "sign", None)):
        raise ConfigError(f"auth strategy {value!r} has no sign() method")

    return value


def _is_credential(value: Any) -> bool:
    return isinstance(value, str) and value != ""
