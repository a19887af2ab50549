"""Run configuration dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path

LETSENCRYPT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"

CERTIFICATE_EXTENSION = ".cer"
BUNDLE_EXTENSION = ".pfx"


@dataclass(frozen=True)
class TransportConfig:
    """HTTP transport settings handed to the CA client and challenge providers.

    ``verify_tls`` is scoped to the sessions built from this object; nothing
    process-wide is changed when it is disabled.
    """

    verify_tls: bool = True
    timeout: float = 30.0
    poll_interval: float = 2.0
    poll_timeout: float = 120.0
    user_agent: str = "acme-operations/1.0"

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.poll_timeout < self.poll_interval:
            raise ValueError("poll_timeout must not be shorter than poll_interval")


@dataclass(frozen=True)
class RunOptions:
    """Immutable configuration for one issuance run."""

    domains: tuple[str, ...]
    contact: str
    accept_terms_of_service: bool = False
    terms_of_service_uri: str | None = None
    accept_instructions: bool = False
    bundle_password: str | None = None
    install_site: str = "Default Web Site"
    install_binding: str = "*:443"
    store_name: str = "my"
    ignore_tls_validation_errors: bool = False
    output_dir: Path = field(default_factory=Path.cwd)
    max_workers: int = 1
    key_size: int = 2048

    def __post_init__(self) -> None:
        # Accept any iterable of domains but keep it immutable and ordered
        object.__setattr__(self, "domains", tuple(self.domains))
        for domain in self.domains:
            validate_domain(domain)
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.key_size < 2048:
            raise ValueError("key_size must be at least 2048 bits")

    @property
    def contacts(self) -> list[str]:
        """Contact list sent to the CA (a single configured contact)."""
        return [self.contact] if self.contact else []


def validate_domain(domain: str) -> str:
    """Reject domain strings that cannot safely name an artifact file.

    Raises:
        ValueError: If the domain is empty or contains path components
    """
    if not domain or not domain.strip():
        raise ValueError("domain must not be empty")
    if "/" in domain or "\\" in domain or domain in {".", ".."}:
        raise ValueError(f"invalid domain name: {domain!r}")
    return domain


def normalize_contact(contact: str) -> str:
    """Add the ``mailto:`` scheme to bare email contacts."""
    if contact and ":" not in contact:
        return f"mailto:{contact}"
    return contact


def certificate_path(domain: str, output_dir: Path) -> Path:
    """Return the certificate file path for a domain, e.g. ``example.com.cer``."""
    return output_dir / f"{validate_domain(domain)}{CERTIFICATE_EXTENSION}"


def bundle_path(domain: str, output_dir: Path) -> Path:
    """Return the key bundle file path for a domain, e.g. ``example.com.pfx``."""
    return output_dir / f"{validate_domain(domain)}{BUNDLE_EXTENSION}"


def default_directory_url() -> str:
    """ACME directory URL from ``ACME_DIRECTORY_URL`` or Let's Encrypt production."""
    return os.environ.get("ACME_DIRECTORY_URL", LETSENCRYPT_DIRECTORY_URL)
