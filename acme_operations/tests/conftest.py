"""Test fixtures for acme_operations tests."""

from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509 import oid

from acme_operations.lib.cert_utils import generate_private_key
from acme_operations.lib.certificate_request import encode_certificate_request
from acme_operations.lib.config import RunOptions
from acme_operations.lib.logging_config import LOGGER
from acme_operations.lib.models import (
    Authorization,
    CertificateArtifact,
    ChallengeDescriptor,
    ChallengeResult,
    KeyBundle,
    Registration,
)
from acme_operations.lib.orchestrator import IssuanceOrchestrator

TERMS_URI = "https://ca.test/terms/v1"
ACCOUNT_URL = "https://ca.test/acme/acct/1"
CONTACT = "mailto:admin@example.com"


class StubCAClient:
    """CA client double recording calls; certificates are opaque bytes."""

    def __init__(
        self,
        agreement: str | None = TERMS_URI,
        location: str | None = ACCOUNT_URL,
        events: list[tuple[str, str]] | None = None,
    ) -> None:
        self.agreement = agreement
        self.location = location
        self.events = events if events is not None else []
        self.register_calls: list[tuple[str | None, list[str]]] = []
        self.update_calls: list[tuple[str, str | None, list[str]]] = []
        self.authorization_calls: list[str] = []
        self.certificate_calls: list[tuple[bytes, Authorization]] = []
        self.registration_error: Exception | None = None
        self.update_error: Exception | None = None
        self.failing_authorizations: set[str] = set()
        self.failing_certificates: set[str] = set()

    def register(self, agreement: str | None, contacts: list[str]) -> Registration:
        self.events.append(("register", ""))
        self.register_calls.append((agreement, contacts))
        if self.registration_error is not None:
            raise self.registration_error
        return Registration(
            id="1",
            created_at="2026-01-01T00:00:00Z",
            contact=list(contacts),
            agreement=self.agreement,
            location=self.location,
        )

    def update_registration(
        self, location: str, agreement: str | None, contacts: list[str]
    ) -> Registration:
        self.update_calls.append((location, agreement, contacts))
        if self.update_error is not None:
            raise self.update_error
        return Registration(
            id="1",
            created_at="2026-01-01T00:00:00Z",
            contact=list(contacts),
            agreement=agreement,
            location=location,
        )

    def new_authorization(self, domain: str) -> Authorization:
        self.events.append(("authorize", domain))
        self.authorization_calls.append(domain)
        if domain in self.failing_authorizations:
            raise RuntimeError(f"authorization endpoint unavailable for {domain}")
        return Authorization(
            domain=domain,
            challenges=[
                ChallengeDescriptor(
                    type="http-01",
                    url=f"https://ca.test/acme/chall/{domain}",
                    token=f"token-{domain.replace('.', '-')}",
                )
            ],
            status="pending",
            url=f"https://ca.test/acme/authz/{domain}",
            order_url=f"https://ca.test/acme/order/{domain}",
        )

    def new_certificate(self, csr: bytes, authorization: Authorization) -> CertificateArtifact:
        self.certificate_calls.append((csr, authorization))
        if authorization.domain in self.failing_certificates:
            raise RuntimeError(f"finalize failed for {authorization.domain}")
        return CertificateArtifact(
            domain=authorization.domain, data=f"CERT:{authorization.domain}".encode()
        )


class IssuingCAClient(StubCAClient):
    """CA client double that signs real certificates with a test CA."""

    def __init__(self, ca_key: RSAPrivateKey, ca_cert: x509.Certificate, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.ca_key = ca_key
        self.ca_cert = ca_cert

    def new_certificate(self, csr: bytes, authorization: Authorization) -> CertificateArtifact:
        super().new_certificate(csr, authorization)
        request = x509.load_der_x509_csr(csr)
        now = datetime.now(UTC)
        cert = (
            x509.CertificateBuilder()
            .subject_name(request.subject)
            .issuer_name(self.ca_cert.subject)
            .public_key(request.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=90))
            .add_extension(
                request.extensions.get_extension_for_class(x509.SubjectAlternativeName).value,
                critical=False,
            )
            .sign(self.ca_key, hashes.SHA256())
        )
        chain = cert.public_bytes(serialization.Encoding.PEM) + self.ca_cert.public_bytes(
            serialization.Encoding.PEM
        )
        return CertificateArtifact(domain=authorization.domain, data=chain)


@dataclass
class StubPendingChallenge:
    """Pending challenge double returning a fixed status."""

    domain: str
    instructions: str
    status: str
    events: list[tuple[str, str]]
    error: Exception | None = None

    def complete(self) -> ChallengeResult:
        self.events.append(("complete", self.domain))
        if self.error is not None:
            raise self.error
        return ChallengeResult(status=self.status)

    def discard(self) -> None:
        self.events.append(("discard", self.domain))


class StubChallengeProvider:
    """Challenge provider double; every domain is valid unless configured otherwise."""

    def __init__(self, events: list[tuple[str, str]] | None = None) -> None:
        self.events = events if events is not None else []
        self.calls: list[tuple[str, str, Authorization]] = []
        self.statuses: dict[str, str] = {}
        self.without_challenge: set[str] = set()
        self.completion_errors: dict[str, Exception] = {}

    def accept_challenge(
        self, domain: str, site: str, authorization: Authorization
    ) -> StubPendingChallenge | None:
        self.calls.append((domain, site, authorization))
        if domain in self.without_challenge:
            return None
        return StubPendingChallenge(
            domain=domain,
            instructions=f"Serve token for {domain}",
            status=self.statuses.get(domain, "valid"),
            events=self.events,
            error=self.completion_errors.get(domain),
        )


class RecordingInstaller:
    """Server configuration double recording installs and bindings."""

    def __init__(self) -> None:
        self.installs: list[tuple[Path, str, Any]] = []
        self.bindings: list[tuple[str, str, str, str, str]] = []
        self.failing = False

    def install_certificate_with_private_key(
        self, certificate_path: Path, store_name: str, private_key: Any
    ) -> str:
        self.installs.append((certificate_path, store_name, private_key))
        if self.failing:
            raise PermissionError("store is read-only")
        return f"HANDLE-{certificate_path.stem}"

    def configure_server(
        self, domain: str, certificate_handle: str, store_name: str, site: str, binding: str
    ) -> None:
        self.bindings.append((domain, certificate_handle, store_name, site, binding))


class RecordingPrompt:
    """Instruction prompt double."""

    def __init__(self, events: list[tuple[str, str]] | None = None) -> None:
        self.events = events if events is not None else []
        self.confirmed: list[tuple[str, str]] = []
        self.error: BaseException | None = None

    def confirm(self, domain: str, instructions: str) -> None:
        self.events.append(("confirm", domain))
        if self.error is not None:
            raise self.error
        self.confirmed.append((domain, instructions))


class RecordingSecretProvider:
    """Secret provider double counting how often it was asked."""

    def __init__(self, password: str = "bundle-secret") -> None:
        self.password = password
        self.calls = 0

    def obtain_bundle_password(self) -> str:
        self.calls += 1
        return self.password


class SentinelKey:
    """Unique stand-in for a generated key pair."""

    def __init__(self, number: int) -> None:
        self.number = number

    def __repr__(self) -> str:
        return f"SentinelKey({self.number})"


@pytest.fixture(autouse=True)
def propagate_logs() -> Generator[None]:
    """Let caplog see records from the non-propagating singleton logger."""
    LOGGER.propagate = True
    yield
    LOGGER.propagate = False


@pytest.fixture
def events() -> list[tuple[str, str]]:
    """Shared call log across doubles, for ordering assertions."""
    return []


@pytest.fixture
def ca_client(events: list[tuple[str, str]]) -> StubCAClient:
    return StubCAClient(events=events)


@pytest.fixture
def challenge_provider(events: list[tuple[str, str]]) -> StubChallengeProvider:
    return StubChallengeProvider(events=events)


@pytest.fixture
def installer() -> RecordingInstaller:
    return RecordingInstaller()


@pytest.fixture
def prompt(events: list[tuple[str, str]]) -> RecordingPrompt:
    return RecordingPrompt(events=events)


@pytest.fixture
def secret_provider() -> RecordingSecretProvider:
    return RecordingSecretProvider()


@pytest.fixture
def sentinel_key_generator() -> Callable[[], SentinelKey]:
    """Key generator double returning a new sentinel on every call."""
    counter = iter(range(1, 1_000))
    return lambda: SentinelKey(next(counter))


@pytest.fixture
def stub_csr_encoder() -> Callable[[str, Any], bytes]:
    return lambda domain, key: f"CSR:{domain}:{key!r}".encode()


@pytest.fixture
def bundle_calls() -> list[tuple[Any, Path, str, Path]]:
    return []


@pytest.fixture
def stub_bundle_builder(
    bundle_calls: list[tuple[Any, Path, str, Path]],
) -> Callable[[Any, Path, str, Path], KeyBundle]:
    """Bundle builder double that writes a marker file."""

    def build(key: Any, certificate_path: Path, password: str, bundle_path: Path) -> KeyBundle:
        bundle_calls.append((key, certificate_path, password, bundle_path))
        bundle_path.write_bytes(b"PFX")
        return KeyBundle(path=bundle_path, password=password)

    return build


@pytest.fixture
def make_options(tmp_path: Path) -> Callable[..., RunOptions]:
    """Build RunOptions writing artifacts to tmp_path."""

    def build(domains: list[str], **overrides: Any) -> RunOptions:
        values: dict[str, Any] = {
            "domains": tuple(domains),
            "contact": CONTACT,
            "accept_terms_of_service": True,
            "terms_of_service_uri": TERMS_URI,
            "accept_instructions": True,
            "bundle_password": None,
            "install_site": "example-site",
            "install_binding": "*:443",
            "output_dir": tmp_path,
        }
        values.update(overrides)
        return RunOptions(**values)

    return build


@pytest.fixture
def make_orchestrator(
    make_options: Callable[..., RunOptions],
    ca_client: StubCAClient,
    challenge_provider: StubChallengeProvider,
    installer: RecordingInstaller,
    secret_provider: RecordingSecretProvider,
    prompt: RecordingPrompt,
    sentinel_key_generator: Callable[[], SentinelKey],
    stub_csr_encoder: Callable[[str, Any], bytes],
    stub_bundle_builder: Callable[[Any, Path, str, Path], KeyBundle],
) -> Callable[..., IssuanceOrchestrator]:
    """Build an orchestrator wired entirely to test doubles."""

    def build(domains: list[str], **overrides: Any) -> IssuanceOrchestrator:
        collaborators: dict[str, Any] = {
            "ca_client": ca_client,
            "challenge_provider": challenge_provider,
            "server_configuration": installer,
            "secret_provider": secret_provider,
            "prompt": prompt,
            "key_generator": sentinel_key_generator,
            "csr_encoder": stub_csr_encoder,
            "bundle_builder": stub_bundle_builder,
        }
        for name in list(overrides):
            if name in collaborators:
                collaborators[name] = overrides.pop(name)
        return IssuanceOrchestrator(options=make_options(domains, **overrides), **collaborators)

    return build


@pytest.fixture(scope="session")
def test_ca() -> tuple[RSAPrivateKey, x509.Certificate]:
    """Self-signed test CA (key, certificate)."""
    key = generate_private_key(key_size=2048)
    name = x509.Name([x509.NameAttribute(oid.NameOID.COMMON_NAME, "Test ACME CA")])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture(scope="session")
def domain_key() -> RSAPrivateKey:
    """Key pair for single-domain certificate tests."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def issued_certificate_file(
    tmp_path: Path,
    test_ca: tuple[RSAPrivateKey, x509.Certificate],
    domain_key: RSAPrivateKey,
) -> Path:
    """``example.com.cer`` holding a PEM chain issued for domain_key."""
    ca_key, ca_cert = test_ca
    client = IssuingCAClient(ca_key, ca_cert)
    authorization = client.new_authorization("example.com")
    artifact = client.new_certificate(
        encode_certificate_request("example.com", domain_key), authorization
    )
    path = tmp_path / "example.com.cer"
    path.write_bytes(artifact.data)
    return path
