"""Result models for ACME issuance runs."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path


class DomainPhase(str, Enum):
    """Last phase a domain reached in the per-domain state machine."""

    AUTHORIZING = "authorizing"
    AUTHORIZED = "authorized"
    REQUESTING = "requesting"
    ISSUED = "issued"
    PERSISTED = "persisted"
    INSTALLED = "installed"


class DomainState(str, Enum):
    """Terminal state of one domain."""

    INSTALLED = "installed"
    REJECTED = "rejected"
    FAILED = "failed"


class TermsUpdate(str, Enum):
    """What happened to the terms-of-service reconciliation step."""

    NOT_REQUESTED = "not_requested"
    NO_LOCATION = "no_location"
    UPDATED = "updated"
    SKIPPED_MISMATCH = "skipped_mismatch"


class RunStatus(IntEnum):
    """Run-level result; the value is the process exit status."""

    SUCCEEDED = 0
    COMPLETED_WITH_FAILURES = 1
    ABORTED = 2


@dataclass
class Registration:
    """Account state returned by the CA."""

    id: str
    created_at: str | None
    contact: list[str]
    agreement: str | None
    location: str | None
    initial_ip: str | None = None


@dataclass
class ChallengeDescriptor:
    """One challenge offered by the CA for an authorization."""

    type: str
    url: str
    token: str
    status: str = "pending"


@dataclass
class Authorization:
    """Proof-of-control ticket for one domain.

    ``order_url`` ties the authorization to the order that is finalized with
    the CSR once the challenge is valid.
    """

    domain: str
    challenges: list[ChallengeDescriptor]
    status: str
    url: str
    order_url: str | None = None

    def find_challenge(self, challenge_type: str) -> ChallengeDescriptor | None:
        """Return the first offered challenge of the given type."""
        for challenge in self.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None


@dataclass
class ChallengeResult:
    """Status read back after completing a challenge."""

    status: str
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.status.lower() == "valid"


@dataclass
class CertificateArtifact:
    """Issued certificate bytes for a domain, exactly as returned by the CA."""

    domain: str
    data: bytes


@dataclass
class KeyBundle:
    """Password-protected certificate + key export."""

    path: Path
    password: str = field(repr=False)


@dataclass
class DomainOutcome:
    """Result of processing one domain.

    Contains the phase reached, the terminal state and any artifact paths.
    Bundle failures do not change the state; they are listed in ``warnings``.
    """

    domain: str
    phase: DomainPhase
    state: DomainState
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    certificate_path: Path | None = None
    bundle_path: Path | None = None
    certificate_handle: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is DomainState.INSTALLED

    def to_dict(self) -> dict[str, object]:
        """Serialize for the JSON run summary."""
        return {
            "domain": self.domain,
            "phase": self.phase.value,
            "state": self.state.value,
            "error": self.error,
            "warnings": list(self.warnings),
            "certificatePath": str(self.certificate_path) if self.certificate_path else None,
            "bundlePath": str(self.bundle_path) if self.bundle_path else None,
            "certificateHandle": self.certificate_handle,
        }


@dataclass
class RunReport:
    """Result of a whole run: registration reconciliation and per-domain outcomes."""

    outcomes: list[DomainOutcome] = field(default_factory=list)
    registration: Registration | None = None
    terms_update: TermsUpdate = TermsUpdate.NOT_REQUESTED
    abort_reason: str | None = None

    @property
    def status(self) -> RunStatus:
        if self.abort_reason is not None:
            return RunStatus.ABORTED
        if all(outcome.succeeded for outcome in self.outcomes):
            return RunStatus.SUCCEEDED
        return RunStatus.COMPLETED_WITH_FAILURES

    @property
    def failed_domains(self) -> list[str]:
        return [outcome.domain for outcome in self.outcomes if not outcome.succeeded]

    def to_dict(self) -> dict[str, object]:
        """Serialize for the JSON run summary."""
        return {
            "status": self.status.name.lower(),
            "exitCode": int(self.status),
            "abortReason": self.abort_reason,
            "account": self.registration.location if self.registration else None,
            "termsUpdate": self.terms_update.value,
            "domains": [outcome.to_dict() for outcome in self.outcomes],
        }
