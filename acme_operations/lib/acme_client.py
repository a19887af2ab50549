"""ACME (RFC 8555) client for account, authorization and certificate operations."""

import os
import threading
import time
from pathlib import Path
from typing import Any, cast

import requests
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .cert_utils import deserialize_private_key, generate_private_key, serialize_private_key
from .config import TransportConfig
from .jws import b64url, jwk_thumbprint, sign_request
from .logging_config import get_logger
from .models import (
    Authorization,
    CertificateArtifact,
    ChallengeDescriptor,
    ChallengeResult,
    Registration,
)
from .types import (
    AccountResource,
    AcmeDirectory,
    AuthorizationResource,
    OrderResource,
    Problem,
)

logger = get_logger(__name__)

JOSE_CONTENT_TYPE = "application/jose+json"
PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"
BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
IN_PROGRESS_STATUSES = {"pending", "processing"}


class AcmeError(Exception):
    """Error response or transport failure talking to the ACME server."""

    def __init__(
        self,
        message: str,
        problem_type: str | None = None,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.problem_type = problem_type
        self.detail = detail
        self.status_code = status_code


class AcmeTimeoutError(AcmeError):
    """A polled resource did not leave its in-progress state before the deadline."""


def load_or_create_account_key(path: Path, key_size: int = 2048) -> RSAPrivateKey:
    """Load the ACME account key, generating and saving it on first use.

    Args:
        path: PEM file holding the account key
        key_size: RSA key size used when a new key is generated

    Returns:
        Account private key
    """
    if path.exists():
        return deserialize_private_key(path.read_bytes())

    logger.info("Generating new account key: %s", path)
    key = generate_private_key(key_size)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(serialize_private_key(key))
    return key


def _problem_from(response: requests.Response) -> Problem:
    try:
        body = response.json()
    except ValueError:
        return {"detail": response.text, "status": response.status_code}
    return cast(Problem, body) if isinstance(body, dict) else {"status": response.status_code}


class AcmeClient:
    """ACME client bound to one directory URL and one account key.

    Thread-safe for concurrent per-domain calls once ``register`` has run:
    the nonce pool is guarded by a lock and the account URL is only
    written during registration.
    """

    def __init__(
        self,
        directory_url: str,
        account_key: RSAPrivateKey,
        transport: TransportConfig,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize ACME client.

        Args:
            directory_url: ACME directory URL
            account_key: Account private key used to sign requests
            transport: Timeouts, polling deadline and TLS verification setting
            session: Optional pre-built requests session (used by tests)
        """
        self.directory_url = directory_url
        self.account_key = account_key
        self.transport = transport
        self.account_url: str | None = None

        self.session = session if session is not None else requests.Session()
        self.session.verify = transport.verify_tls
        self.session.headers.update({"User-Agent": transport.user_agent})
        if not transport.verify_tls:
            logger.warning("TLS certificate validation disabled for %s", directory_url)

        self._directory: AcmeDirectory | None = None
        self._nonces: list[str] = []
        self._nonce_lock = threading.Lock()

    @property
    def directory(self) -> AcmeDirectory:
        """ACME directory, fetched on first use."""
        if self._directory is None:
            response = self._send("GET", self.directory_url)
            self._directory = cast(AcmeDirectory, response.json())
        return self._directory

    @property
    def terms_of_service(self) -> str | None:
        """Terms-of-service URI currently published by the CA."""
        return self.directory.get("meta", {}).get("termsOfService")

    def key_authorization(self, token: str) -> str:
        """Return the key authorization for a challenge token."""
        return f"{token}.{jwk_thumbprint(self.account_key)}"

    def register(self, agreement: str | None, contacts: list[str]) -> Registration:
        """Create the account, or look up the existing one for this key.

        Args:
            agreement: Terms-of-service URI being agreed to, None to not agree
            contacts: Contact URIs, e.g. ``mailto:admin@example.com``

        Returns:
            Registration with the account location and the agreement in effect
        """
        payload: dict[str, Any] = {"termsOfServiceAgreed": agreement is not None}
        if contacts:
            payload["contact"] = contacts

        response = self._post(self.directory["newAccount"], payload, use_jwk=True)
        location = response.headers.get("Location")
        if location:
            self.account_url = location

        return self._registration_from(cast(AccountResource, response.json()), location)

    def update_registration(
        self, location: str, agreement: str | None, contacts: list[str]
    ) -> Registration:
        """Refresh the account contacts and agreement.

        Args:
            location: Account URL
            agreement: Terms-of-service URI being agreed to
            contacts: Contact URIs

        Returns:
            Updated Registration
        """
        payload: dict[str, Any] = {"contact": contacts}
        if agreement is not None:
            payload["termsOfServiceAgreed"] = True

        response = self._post(location, payload)
        return self._registration_from(cast(AccountResource, response.json()), location)

    def new_authorization(self, domain: str) -> Authorization:
        """Open a single-domain order and return its authorization.

        Args:
            domain: DNS identifier to authorize

        Returns:
            Authorization with offered challenges and the order URL
        """
        payload = {"identifiers": [{"type": "dns", "value": domain}]}
        response = self._post(self.directory["newOrder"], payload)
        order = cast(OrderResource, response.json())
        order_url = response.headers.get("Location")

        if not order.get("authorizations"):
            raise AcmeError(f"order for {domain} has no authorizations")

        authorization_url = order["authorizations"][0]
        resource = self._fetch_authorization(authorization_url)
        logger.debug("Authorization %s for %s is %s", authorization_url, domain, resource["status"])

        return Authorization(
            domain=domain,
            challenges=[
                ChallengeDescriptor(
                    type=challenge["type"],
                    url=challenge["url"],
                    token=challenge.get("token", ""),
                    status=challenge["status"],
                )
                for challenge in resource.get("challenges", [])
            ],
            status=resource["status"],
            url=authorization_url,
            order_url=order_url,
        )

    def answer_challenge(self, challenge: ChallengeDescriptor) -> None:
        """Tell the server the challenge response is in place."""
        self._post(challenge.url, {})

    def poll_authorization(self, authorization: Authorization) -> ChallengeResult:
        """Poll an authorization until it leaves pending/processing.

        Returns:
            ChallengeResult with the final status and the first challenge error

        Raises:
            AcmeTimeoutError: If the poll deadline expires
        """
        deadline = time.monotonic() + self.transport.poll_timeout
        while True:
            resource = self._fetch_authorization(authorization.url)
            status = resource["status"]
            if status not in IN_PROGRESS_STATUSES:
                error = None
                for challenge in resource.get("challenges", []):
                    if "error" in challenge:
                        error = challenge["error"].get("detail")
                        break
                return ChallengeResult(status=status, error=error)
            if time.monotonic() >= deadline:
                raise AcmeTimeoutError(
                    f"authorization for {authorization.domain} still {status} "
                    f"after {self.transport.poll_timeout}s"
                )
            time.sleep(self.transport.poll_interval)

    def new_certificate(self, csr: bytes, authorization: Authorization) -> CertificateArtifact:
        """Finalize the authorization's order with a CSR and download the certificate.

        Args:
            csr: DER-encoded certificate signing request
            authorization: Valid authorization returned by new_authorization

        Returns:
            CertificateArtifact with the PEM chain as returned by the CA

        Raises:
            ValueError: If the authorization is not tied to an order
            AcmeError: If the order becomes invalid
            AcmeTimeoutError: If the order does not become valid in time
        """
        if not authorization.order_url:
            raise ValueError(f"authorization for {authorization.domain} has no order")

        order = self._wait_for_order(authorization.order_url, {"ready", "valid"})
        if order["status"] == "ready":
            self._post(order["finalize"], {"csr": b64url(csr)})
            order = self._wait_for_order(authorization.order_url, {"valid"})

        certificate_url = order.get("certificate")
        if not certificate_url:
            raise AcmeError(f"order for {authorization.domain} is valid but has no certificate")

        response = self._post(certificate_url, None, accept=PEM_CHAIN_CONTENT_TYPE)
        return CertificateArtifact(domain=authorization.domain, data=response.content)

    def _fetch_authorization(self, url: str) -> AuthorizationResource:
        return cast(AuthorizationResource, self._post(url, None).json())

    def _wait_for_order(self, order_url: str, wanted: set[str]) -> OrderResource:
        deadline = time.monotonic() + self.transport.poll_timeout
        while True:
            order = cast(OrderResource, self._post(order_url, None).json())
            status = order["status"]
            if status in wanted:
                return order
            if status == "invalid":
                problem = order.get("error", {})
                raise AcmeError(
                    f"order {order_url} is invalid",
                    problem_type=problem.get("type"),
                    detail=problem.get("detail"),
                )
            if time.monotonic() >= deadline:
                raise AcmeTimeoutError(
                    f"order {order_url} still {status} after {self.transport.poll_timeout}s"
                )
            time.sleep(self.transport.poll_interval)

    def _registration_from(
        self, account: AccountResource, location: str | None
    ) -> Registration:
        account_id = str(account.get("id") or (location.rsplit("/", 1)[-1] if location else ""))
        return Registration(
            id=account_id,
            created_at=account.get("createdAt"),
            contact=list(account.get("contact", [])),
            agreement=self.terms_of_service,
            location=location,
            initial_ip=account.get("initialIp"),
        )

    def _take_nonce(self) -> str:
        with self._nonce_lock:
            if self._nonces:
                return self._nonces.pop()
        response = self._send("HEAD", self.directory["newNonce"])
        nonce = response.headers.get("Replay-Nonce")
        if not nonce:
            raise AcmeError("server did not return a Replay-Nonce")
        return nonce

    def _keep_nonce(self, response: requests.Response) -> None:
        nonce = response.headers.get("Replay-Nonce")
        if nonce:
            with self._nonce_lock:
                self._nonces.append(nonce)

    def _post(
        self,
        url: str,
        payload: dict[str, Any] | None,
        use_jwk: bool = False,
        accept: str | None = None,
    ) -> requests.Response:
        """Send a signed POST (payload None = POST-as-GET).

        A badNonce rejection is re-sent once with a fresh nonce.
        """
        if not use_jwk and self.account_url is None:
            raise AcmeError("account is not registered")

        headers = {"Content-Type": JOSE_CONTENT_TYPE}
        if accept:
            headers["Accept"] = accept

        for attempt in range(2):
            body = sign_request(
                self.account_key,
                url,
                self._take_nonce(),
                payload,
                kid=None if use_jwk else self.account_url,
            )
            response = self._send("POST", url, json=body, headers=headers)
            self._keep_nonce(response)
            if response.status_code < 400:
                return response

            problem = _problem_from(response)
            if problem.get("type") == BAD_NONCE and attempt == 0:
                logger.debug("Bad nonce for %s, retrying with a fresh one", url)
                continue
            raise AcmeError(
                f"{url} returned {response.status_code}: {problem.get('detail', '')}",
                problem_type=problem.get("type"),
                detail=problem.get("detail"),
                status_code=response.status_code,
            )

        raise AcmeError(f"{url} rejected nonce twice")

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.transport.timeout, **kwargs)
        except requests.RequestException as e:
            raise AcmeError(f"{method} {url} failed: {e}") from e

        if method != "POST" and response.status_code >= 400:
            raise AcmeError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response
