"""Domain-control challenge providers (http-01 webroot, manual dns-01)."""

import hashlib
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import requests

from .acme_client import AcmeClient
from .config import TransportConfig
from .jws import b64url
from .logging_config import get_logger
from .models import Authorization, ChallengeDescriptor, ChallengeResult

logger = get_logger(__name__)

HTTP_01 = "http-01"
DNS_01 = "dns-01"
CHALLENGE_PATH = ".well-known/acme-challenge"

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class AcmePendingChallenge:
    """Challenge response in place, waiting to be submitted to the CA."""

    domain: str
    instructions: str
    client: AcmeClient
    authorization: Authorization
    challenge: ChallengeDescriptor
    cleanup: Callable[[], None] | None = None

    def complete(self) -> ChallengeResult:
        """Answer the challenge and poll the authorization to a final status."""
        try:
            self.client.answer_challenge(self.challenge)
            result = self.client.poll_authorization(self.authorization)
        finally:
            if self.cleanup is not None:
                self.cleanup()
        if not result.is_valid:
            logger.warning(
                "Challenge for %s ended %s: %s",
                self.domain,
                result.status,
                result.error,
                extra={"domain": self.domain},
            )
        return result

    def discard(self) -> None:
        """Remove the challenge response without submitting it."""
        if self.cleanup is not None:
            self.cleanup()
            logger.info("Discarded challenge response for %s", self.domain, extra={"domain": self.domain})


@dataclass
class AuthorizedChallenge:
    """Authorization the CA already considers valid; nothing to submit."""

    domain: str
    instructions: str

    def complete(self) -> ChallengeResult:
        return ChallengeResult(status="valid")

    def discard(self) -> None:
        pass


def _already_valid(domain: str, authorization: Authorization) -> AuthorizedChallenge | None:
    if authorization.status.lower() == "valid":
        return AuthorizedChallenge(
            domain=domain,
            instructions=f"Authorization for {domain} is already valid.",
        )
    return None


class HttpChallengeProvider:
    """Answers http-01 by writing the key authorization into a webroot.

    ``webroot`` may contain ``{site}``, replaced with the install-site hint,
    e.g. ``/var/www/{site}``.
    """

    def __init__(
        self,
        client: AcmeClient,
        webroot: str,
        transport: TransportConfig,
        session: requests.Session | None = None,
        self_check: bool = True,
    ) -> None:
        self.client = client
        self.webroot = webroot
        self.transport = transport
        self.self_check = self_check
        self.session = session if session is not None else requests.Session()
        self.session.verify = transport.verify_tls

    def accept_challenge(
        self, domain: str, site: str, authorization: Authorization
    ) -> AcmePendingChallenge | AuthorizedChallenge | None:
        """Write the http-01 response file for a domain.

        Returns:
            Pending challenge, or None when the CA offered no usable http-01
        """
        authorized = _already_valid(domain, authorization)
        if authorized is not None:
            return authorized

        challenge = authorization.find_challenge(HTTP_01)
        if challenge is None:
            logger.warning("No %s challenge offered for %s", HTTP_01, domain)
            return None
        if not _TOKEN_PATTERN.match(challenge.token):
            logger.error("Refusing malformed challenge token for %s", domain)
            return None

        key_authorization = self.client.key_authorization(challenge.token)
        challenge_dir = Path(self.webroot.format(site=site)) / CHALLENGE_PATH
        challenge_dir.mkdir(parents=True, exist_ok=True)
        token_path = challenge_dir / challenge.token
        token_path.write_text(key_authorization)
        logger.info("Wrote %s response to %s", HTTP_01, token_path, extra={"domain": domain})

        url = f"http://{domain}/{CHALLENGE_PATH}/{challenge.token}"
        if self.self_check:
            self._check_served(domain, url, key_authorization)

        return AcmePendingChallenge(
            domain=domain,
            instructions=f"Serving {token_path} at {url}",
            client=self.client,
            authorization=authorization,
            challenge=challenge,
            cleanup=lambda: token_path.unlink(missing_ok=True),
        )

    def _check_served(self, domain: str, url: str, key_authorization: str) -> None:
        """Fetch the challenge URL once; a mismatch is only a warning."""
        try:
            response = self.session.get(url, timeout=self.transport.timeout)
        except requests.RequestException as e:
            logger.warning("Self-check of %s failed: %s", url, e, extra={"domain": domain})
            return
        if response.status_code != 200 or response.text.strip() != key_authorization:
            logger.warning(
                "Self-check of %s returned %s with unexpected content",
                url,
                response.status_code,
                extra={"domain": domain},
            )


class DnsChallengeProvider:
    """Answers dns-01 by telling the operator which TXT record to create."""

    def __init__(self, client: AcmeClient) -> None:
        self.client = client

    def txt_record_value(self, token: str) -> str:
        """Return the TXT record value for a dns-01 token."""
        digest = hashlib.sha256(self.client.key_authorization(token).encode("utf-8")).digest()
        return b64url(digest)

    def accept_challenge(
        self, domain: str, site: str, authorization: Authorization
    ) -> AcmePendingChallenge | AuthorizedChallenge | None:
        authorized = _already_valid(domain, authorization)
        if authorized is not None:
            return authorized

        challenge = authorization.find_challenge(DNS_01)
        if challenge is None:
            logger.warning("No %s challenge offered for %s", DNS_01, domain)
            return None

        record_name = f"_acme-challenge.{domain.removeprefix('*.')}"
        instructions = (
            f"Create a DNS TXT record {record_name} with the value "
            f"{self.txt_record_value(challenge.token)} and wait until it has propagated."
        )
        return AcmePendingChallenge(
            domain=domain,
            instructions=instructions,
            client=self.client,
            authorization=authorization,
            challenge=challenge,
        )


def build_challenge_provider(
    name: str,
    client: AcmeClient,
    transport: TransportConfig,
    webroot: str | None = None,
) -> HttpChallengeProvider | DnsChallengeProvider:
    """Build the challenge provider selected on the command line.

    Raises:
        ValueError: If the name is unknown or http-01 has no webroot
    """
    if name == HTTP_01:
        if not webroot:
            raise ValueError("http-01 requires a webroot")
        return HttpChallengeProvider(client, webroot, transport)
    if name == DNS_01:
        return DnsChallengeProvider(client)
    raise ValueError(f"unknown challenge provider: {name}")
