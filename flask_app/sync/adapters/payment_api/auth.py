"""
Authentication strategies for the payment API.

The processor does not document which scheme it accepts for a given account,
so the client tries an ordered list of strategies and keeps the first one that
returns a 2xx. A client error moves on to the next strategy; an overloaded or
failing processor stops the chain as a network error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

import requests
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

from flask_app.sync.metrics import record_payment_api_auth_attempt

from . import PaymentApiAuthError, PaymentApiNetworkError, PaymentApiResponseError, PaymentApiSettings

MAX_ERROR_BODY_CHARS = 500
AUTH_REJECTED_STATUSES = frozenset({401, 403})
RATE_LIMITED_STATUS = 429


@dataclass(frozen=True)
class ApiRequest:
    """A fully-built POST request, before any credentials are attached."""

    url: str
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthAttempt:
    strategy: str
    status_code: int | None
    body: str | None = None
    response: requests.Response | None = field(default=None, compare=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def rejected(self) -> bool:
        return self.status_code in AUTH_REJECTED_STATUSES

    @property
    def unavailable(self) -> bool:
        return self.status_code is not None and (
            self.status_code == RATE_LIMITED_STATUS or self.status_code >= 500
        )

    def describe(self) -> str:
        return f"{self.strategy} returned HTTP {self.status_code}: {self.body or '<empty body>'}"

    def as_dict(self) -> dict[str, object]:
        return {"strategy": self.strategy, "status_code": self.status_code, "body": self.body}


class AuthStrategy:
    """Attach one credential scheme to a request and send it."""

    name = "base"

    def headers_for(self, request: ApiRequest) -> dict[str, str]:
        raise NotImplementedError

    def attempt(self, session: requests.Session, request: ApiRequest, *, timeout: float) -> AuthAttempt:
        headers = {**request.headers, **self.headers_for(request)}
        try:
            response = session.post(request.url, data=request.body, headers=headers, timeout=timeout)
        except requests.Timeout as exc:
            raise PaymentApiNetworkError(f"Payment API request timed out after {timeout:g}s") from exc
        except requests.ConnectionError as exc:
            raise PaymentApiNetworkError(f"Could not reach payment API: {exc}") from exc
        except requests.RequestException as exc:
            raise PaymentApiNetworkError(f"Payment API request failed: {exc}") from exc
        body = None
        if not 200 <= response.status_code < 300:
            body = (getattr(response, "text", "") or "")[:MAX_ERROR_BODY_CHARS]
        return AuthAttempt(strategy=self.name, status_code=response.status_code, body=body, response=response)


class SignedRequestStrategy(AuthStrategy):
    """SigV4 request signing with an access key pair."""

    name = "signed-request"

    def __init__(
        self,
        access_key_id: str,
        secret_access_key: str,
        *,
        region: str,
        service: str,
        session_token: str | None = None,
    ) -> None:
        self.credentials = Credentials(access_key_id, secret_access_key, session_token)
        self.region = region
        self.service = service

    def headers_for(self, request: ApiRequest) -> dict[str, str]:
        aws_request = AWSRequest(method="POST", url=request.url, data=request.body, headers=dict(request.headers))
        SigV4Auth(self.credentials, self.service, self.region).add_auth(aws_request)
        return dict(aws_request.headers.items())


class HeaderTokenStrategy(AuthStrategy):
    """Send a static token in a single header, formatted by ``template``."""

    def __init__(self, name: str, header: str, token: str, template: str = "{token}") -> None:
        self.name = name
        self.header = header
        self.token = token
        self.template = template

    def headers_for(self, request: ApiRequest) -> dict[str, str]:
        return {self.header: self.template.format(token=self.token)}


# (strategy name, header, value template), tried in this order for every token.
TOKEN_HEADER_VARIANTS: Sequence[tuple[str, str, str]] = (
    ("api-token", "apiToken", "{token}"),
    ("x-api-key", "X-API-Key", "{token}"),
    ("bearer", "Authorization", "Bearer {token}"),
    ("raw-authorization", "Authorization", "{token}"),
)


def build_auth_strategies(settings: PaymentApiSettings) -> list[AuthStrategy]:
    """Signed requests first when a key pair exists, then every token/header combination."""

    strategies: list[AuthStrategy] = []
    if settings.has_key_pair:
        strategies.append(
            SignedRequestStrategy(
                settings.access_key_id,
                settings.secret_access_key,
                region=settings.signing_region,
                service=settings.signing_service,
                session_token=settings.session_token,
            )
        )
    multiple_tokens = len(settings.tokens) > 1
    for index, token in enumerate(settings.tokens):
        for variant, header, template in TOKEN_HEADER_VARIANTS:
            name = f"{variant}#{index + 1}" if multiple_tokens else variant
            strategies.append(HeaderTokenStrategy(name, header, token, template))
    return strategies


class AuthChain:
    """
    Try strategies in order until one gets a 2xx.

    The winning strategy is tried first on later calls so a paginated sync
    does not repeat rejected attempts for every page. A 429 or 5xx ends the
    chain with ``PaymentApiNetworkError``. ``PaymentApiAuthError`` is raised
    only when every strategy was refused with 401/403; any other mix of
    failures raises ``PaymentApiResponseError``.
    """

    def __init__(self, strategies: Iterable[AuthStrategy], *, logger: logging.Logger | None = None) -> None:
        self.strategies = list(strategies)
        if not self.strategies:
            raise ValueError("AuthChain requires at least one strategy")
        self.logger = logger or logging.getLogger(__name__)
        self._preferred: AuthStrategy | None = None

    @property
    def preferred_strategy(self) -> str | None:
        return self._preferred.name if self._preferred else None

    def _ordered(self) -> list[AuthStrategy]:
        if self._preferred is None:
            return list(self.strategies)
        return [self._preferred] + [s for s in self.strategies if s is not self._preferred]

    def send(self, session: requests.Session, request: ApiRequest, *, timeout: float) -> requests.Response:
        attempts: list[AuthAttempt] = []
        for strategy in self._ordered():
            attempt = strategy.attempt(session, request, timeout=timeout)
            if attempt.ok:
                record_payment_api_auth_attempt(strategy.name, "success")
                if self._preferred is not strategy:
                    self.logger.info(
                        "Payment API accepted authentication strategy %s",
                        strategy.name,
                        extra={"payment_api_auth_strategy": strategy.name, "payment_api_rejected": len(attempts)},
                    )
                self._preferred = strategy
                return attempt.response
            if attempt.unavailable:
                record_payment_api_auth_attempt(strategy.name, "unavailable")
                raise PaymentApiNetworkError(f"Payment API unavailable; {attempt.describe()}")
            record_payment_api_auth_attempt(strategy.name, "failure")
            self.logger.debug(
                "Payment API rejected authentication strategy %s (HTTP %s)",
                strategy.name,
                attempt.status_code,
                extra={"payment_api_auth_strategy": strategy.name, "payment_api_status": attempt.status_code},
            )
            attempts.append(attempt)

        last = attempts[-1]
        self._preferred = None
        if not all(attempt.rejected for attempt in attempts):
            raise PaymentApiResponseError(
                f"Payment API refused all {len(attempts)} authentication schemes, not all with 401/403; "
                f"last attempt {last.describe()}"
            )
        raise PaymentApiAuthError(
            f"All {len(attempts)} payment API authentication schemes were rejected; "
            f"last attempt {last.describe()}",
            status_code=last.status_code,
            body=last.body,
            attempts=[attempt.as_dict() for attempt in attempts],
        )
