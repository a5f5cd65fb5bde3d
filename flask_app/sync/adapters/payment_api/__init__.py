"""Payment API adapter settings, errors, and readiness checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping, Tuple

REQUIRED_CONFIG_KEYS: Tuple[str, ...] = ("PAYMENT_API_BASE_URL",)
TOKEN_CONFIG_KEYS: Tuple[str, ...] = ("PAYMENT_API_TOKEN", "PAYMENT_API_PRIVATE_TOKEN")
KEY_PAIR_CONFIG_KEYS: Tuple[str, ...] = ("PAYMENT_API_ACCESS_KEY_ID", "PAYMENT_API_SECRET_ACCESS_KEY")


class PaymentApiError(RuntimeError):
    """Base error for payment API failures."""


class PaymentApiConfigError(PaymentApiError):
    """Raised when the base URL or every credential is missing."""


class PaymentApiNetworkError(PaymentApiError):
    """Raised on connection failures and timeouts; safe to retry later."""


class PaymentApiAuthError(PaymentApiError):
    """
    Raised when every configured authentication scheme was rejected.

    Carries the last HTTP status and body so operators can tell a rotated
    credential from an outage.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None, attempts=()):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.attempts = tuple(attempts)


class PaymentApiResponseError(PaymentApiError):
    """Raised when a successful response is not JSON or has an unexpected shape."""


@dataclass(frozen=True)
class PaymentApiSettings:
    base_url: str
    search_path: str = "/transaction/gift/search"
    token: str | None = None
    private_token: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    session_token: str | None = None
    signing_region: str = "us-east-1"
    signing_service: str = "execute-api"
    timeout_seconds: float = 30.0

    @property
    def search_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.search_path.lstrip('/')}"

    @property
    def has_key_pair(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    @property
    def tokens(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(token for token in (self.token, self.private_token) if token))


@dataclass(frozen=True)
class PaymentApiReadiness:
    missing_config: Tuple[str, ...]
    credential_mode: Literal["none", "token", "signed", "signed+token"]
    notes: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        if self.missing_config:
            return "missing-config"
        if self.credential_mode == "none":
            return "missing-credentials"
        return "ready"

    def messages(self) -> Tuple[str, ...]:
        messages: list[str] = []
        if self.missing_config:
            messages.append(f"Missing required payment API settings: {', '.join(self.missing_config)}")
        if self.credential_mode == "none":
            messages.append(
                "No payment API credentials configured. Set PAYMENT_API_TOKEN or "
                "PAYMENT_API_ACCESS_KEY_ID/PAYMENT_API_SECRET_ACCESS_KEY."
            )
        messages.extend(self.notes)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "missing_config": list(self.missing_config),
            "credential_mode": self.credential_mode,
            "messages": list(self.messages()),
        }


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def check_payment_api_readiness(config: Mapping[str, Any]) -> PaymentApiReadiness:
    """Perform a non-raising readiness check against a Flask-style config mapping."""

    missing = tuple(sorted(key for key in REQUIRED_CONFIG_KEYS if not _clean(config.get(key))))
    has_token = any(_clean(config.get(key)) for key in TOKEN_CONFIG_KEYS)
    key_values = [_clean(config.get(key)) for key in KEY_PAIR_CONFIG_KEYS]
    has_pair = all(key_values)

    notes: Tuple[str, ...] = ()
    if any(key_values) and not has_pair:
        notes = ("Access key id and secret must both be set; request signing is disabled.",)

    if has_pair and has_token:
        mode = "signed+token"
    elif has_pair:
        mode = "signed"
    elif has_token:
        mode = "token"
    else:
        mode = "none"
    return PaymentApiReadiness(missing_config=missing, credential_mode=mode, notes=notes)


def load_payment_api_settings(config: Mapping[str, Any]) -> PaymentApiSettings:
    """
    Build client settings, raising ``PaymentApiConfigError`` when the adapter
    cannot possibly authenticate.
    """

    readiness = check_payment_api_readiness(config)
    if readiness.status != "ready":
        raise PaymentApiConfigError("; ".join(readiness.messages()))

    timeout = config.get("PAYMENT_API_TIMEOUT_SECONDS") or 30.0
    return PaymentApiSettings(
        base_url=_clean(config.get("PAYMENT_API_BASE_URL")),
        search_path=_clean(config.get("PAYMENT_API_SEARCH_PATH")) or "/transaction/gift/search",
        token=_clean(config.get("PAYMENT_API_TOKEN")),
        private_token=_clean(config.get("PAYMENT_API_PRIVATE_TOKEN")),
        access_key_id=_clean(config.get("PAYMENT_API_ACCESS_KEY_ID")),
        secret_access_key=_clean(config.get("PAYMENT_API_SECRET_ACCESS_KEY")),
        session_token=_clean(config.get("PAYMENT_API_SESSION_TOKEN")),
        signing_region=_clean(config.get("PAYMENT_API_SIGNING_REGION")) or "us-east-1",
        signing_service=_clean(config.get("PAYMENT_API_SIGNING_SERVICE")) or "execute-api",
        timeout_seconds=float(timeout),
    )


__all__ = [
    "PaymentApiAuthError",
    "PaymentApiConfigError",
    "PaymentApiError",
    "PaymentApiNetworkError",
    "PaymentApiReadiness",
    "PaymentApiResponseError",
    "PaymentApiSettings",
    "check_payment_api_readiness",
    "load_payment_api_settings",
]
