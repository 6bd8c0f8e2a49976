"""
WebhookAuth -- Tagged union of outgoing-webhook authentication schemes.

Responsibility:
    Decodes the stored ``authType`` / ``authConfig`` pair of an integration
    into exactly one auth variant, and applies that variant to a header map.

Architecture position:
    Kernel > Domain -- pure functional core.  Decryption is injected as a
    callable so this module holds no key material and performs no I/O.

Stored shape (integration ``config``):
    authType:   "none" | "bearer" | "api_key" | "basic"   (absent means none)
    authConfig: encrypted JSON string, plain JSON string, or dict with
                bearerToken | headerName + apiKey | username + password

Failure modes:
    - InvalidAuthConfigError when the type is unknown, the config is missing
      or cannot be decrypted/parsed, a required field is absent, or an API
      key names a contract header (Content-Type, X-Webhook-*) as headerName.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from crm_kernel.domain.webhooks import HEADER_TEST, PROTECTED_HEADERS
from crm_kernel.exceptions import InvalidAuthConfigError

REDACTED = "[REDACTED]"

DEFAULT_API_KEY_HEADER = "X-API-Key"

# An API key may not replace a contract header
_RESERVED_HEADERS = PROTECTED_HEADERS | {HEADER_TEST.lower()}

Decryptor = Callable[[str], "str | None"]


@dataclass(frozen=True)
class NoAuth:
    auth_type = "none"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        return headers

    def credential_headers(self) -> frozenset[str]:
        return frozenset()


@dataclass(frozen=True, repr=False)
class BearerAuth:
    token: str

    auth_type = "bearer"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def credential_headers(self) -> frozenset[str]:
        return frozenset({"authorization"})

    def __repr__(self) -> str:
        return "BearerAuth(token=[REDACTED])"


@dataclass(frozen=True, repr=False)
class ApiKeyAuth:
    api_key: str
    header_name: str = DEFAULT_API_KEY_HEADER

    auth_type = "api_key"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        headers[self.header_name] = self.api_key
        return headers

    def credential_headers(self) -> frozenset[str]:
        return frozenset({self.header_name.lower()})

    def __repr__(self) -> str:
        return f"ApiKeyAuth(header_name={self.header_name!r}, api_key=[REDACTED])"


@dataclass(frozen=True, repr=False)
class BasicAuth:
    username: str
    password: str

    auth_type = "basic"

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        raw = f"{self.username}:{self.password}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"
        return headers

    def credential_headers(self) -> frozenset[str]:
        return frozenset({"authorization"})

    def __repr__(self) -> str:
        return f"BasicAuth(username={self.username!r}, password=[REDACTED])"


WebhookAuth = NoAuth | BearerAuth | ApiKeyAuth | BasicAuth


def _require(auth_type: str, config: Mapping[str, Any], key: str) -> str:
    value = config.get(key)
    if value is None or not isinstance(value, str):
        raise InvalidAuthConfigError(auth_type, f"missing '{key}'")
    return value


def _load_config(
    auth_type: str,
    raw: Any,
    decrypt: Decryptor | None,
) -> Mapping[str, Any]:
    if raw is None:
        raise InvalidAuthConfigError(auth_type, "authConfig is missing")
    if isinstance(raw, Mapping):
        return raw
    if not isinstance(raw, str):
        raise InvalidAuthConfigError(auth_type, "authConfig must be an object or string")

    plaintext = decrypt(raw) if decrypt is not None else raw
    if not plaintext:
        raise InvalidAuthConfigError(auth_type, "authConfig could not be decrypted")
    try:
        parsed = json.loads(plaintext)
    except ValueError:
        raise InvalidAuthConfigError(auth_type, "authConfig is not valid JSON") from None
    if not isinstance(parsed, Mapping):
        raise InvalidAuthConfigError(auth_type, "authConfig must decode to an object")
    return parsed


def decode_auth(
    auth_type: str | None,
    auth_config: Any,
    decrypt: Decryptor | None = None,
) -> WebhookAuth:
    """
    Decode stored auth settings into one WebhookAuth variant.

    Args:
        auth_type: Stored ``authType``; None or "none" means no auth.
        auth_config: Stored ``authConfig`` (encrypted string, JSON string
            or mapping).
        decrypt: Turns a stored string into plaintext JSON, or None on
            failure.  Called at most once.

    Raises:
        InvalidAuthConfigError: If the settings cannot be decoded.
    """
    if not auth_type or auth_type == "none":
        return NoAuth()

    if auth_type not in ("bearer", "api_key", "basic"):
        raise InvalidAuthConfigError(auth_type, "unknown auth type")

    config = _load_config(auth_type, auth_config, decrypt)

    if auth_type == "bearer":
        return BearerAuth(token=_require(auth_type, config, "bearerToken"))
    if auth_type == "api_key":
        header_name = config.get("headerName") or DEFAULT_API_KEY_HEADER
        if not isinstance(header_name, str):
            raise InvalidAuthConfigError(auth_type, "headerName must be a string")
        if header_name.strip().lower() in _RESERVED_HEADERS:
            raise InvalidAuthConfigError(
                auth_type, f"headerName '{header_name}' is a reserved webhook header"
            )
        return ApiKeyAuth(
            api_key=_require(auth_type, config, "apiKey"),
            header_name=header_name,
        )
    return BasicAuth(
        username=_require(auth_type, config, "username"),
        password=_require(auth_type, config, "password"),
    )


def redact_headers(headers: Mapping[str, str], auth: WebhookAuth) -> dict[str, str]:
    """Copy of headers with every credential value replaced by REDACTED."""
    secret = auth.credential_headers() | {"authorization"}
    return {
        name: (REDACTED if name.lower() in secret else value)
        for name, value in headers.items()
    }
