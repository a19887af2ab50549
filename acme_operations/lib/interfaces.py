"""Collaborator interfaces the issuance orchestrator depends on."""

from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .models import Authorization, CertificateArtifact, ChallengeResult, KeyBundle, Registration

KeyGenerator = Callable[[], RSAPrivateKey]
"""Returns a fresh key pair on every call."""

CsrEncoder = Callable[[str, RSAPrivateKey], bytes]
"""Encodes (domain, key pair) into a CSR."""

BundleBuilder = Callable[[RSAPrivateKey, Path, str, Path], KeyBundle]
"""Writes (key, certificate path, password) to a bundle path."""


class CAClient(Protocol):
    """Certificate authority operations used by the orchestrator."""

    def register(self, agreement: str | None, contacts: list[str]) -> Registration: ...

    def update_registration(
        self, location: str, agreement: str | None, contacts: list[str]
    ) -> Registration: ...

    def new_authorization(self, domain: str) -> Authorization: ...

    def new_certificate(self, csr: bytes, authorization: Authorization) -> CertificateArtifact: ...


class PendingChallenge(Protocol):
    """A challenge whose side effect is in place and can be submitted."""

    @property
    def instructions(self) -> str: ...

    def complete(self) -> ChallengeResult: ...

    def discard(self) -> None: ...


class ChallengeProvider(Protocol):
    """Performs whatever side effect proves control of a domain."""

    def accept_challenge(
        self, domain: str, site: str, authorization: Authorization
    ) -> PendingChallenge | None: ...


class ServerConfigurationProvider(Protocol):
    """Installs certificates into a store and binds them to a site."""

    def install_certificate_with_private_key(
        self, certificate_path: Path, store_name: str, private_key: RSAPrivateKey
    ) -> str: ...

    def configure_server(
        self,
        domain: str,
        certificate_handle: str,
        store_name: str,
        site: str,
        binding: str,
    ) -> None: ...


class SecretProvider(Protocol):
    """Source of the key bundle password."""

    def obtain_bundle_password(self) -> str: ...


class InstructionPrompt(Protocol):
    """Shows challenge instructions and waits for the operator."""

    def confirm(self, domain: str, instructions: str) -> None: ...
