"""Issuance orchestrator: registration, then authorize -> request -> persist -> install per domain."""

import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .cert_utils import generate_private_key
from .certificate_request import encode_certificate_request
from .config import RunOptions, bundle_path, certificate_path
from .interfaces import (
    BundleBuilder,
    CAClient,
    ChallengeProvider,
    CsrEncoder,
    InstructionPrompt,
    KeyGenerator,
    SecretProvider,
    ServerConfigurationProvider,
)
from .key_bundle import build_key_bundle
from .logging_config import LOGGER
from .models import (
    Authorization,
    CertificateArtifact,
    DomainOutcome,
    DomainPhase,
    DomainState,
    Registration,
    RunReport,
    TermsUpdate,
)

NO_CHALLENGE_AVAILABLE = "no challenge available"


class IssuanceOrchestrator:
    """Drives one issuance run across all configured domains.

    Registration happens exactly once and before any domain is touched; a
    failure there aborts the run. Each domain is then processed on its own:
    a failing domain is recorded in its DomainOutcome and the run moves on.
    A failing key bundle does not stop installation.
    """

    def __init__(
        self,
        options: RunOptions,
        ca_client: CAClient,
        challenge_provider: ChallengeProvider,
        server_configuration: ServerConfigurationProvider,
        secret_provider: SecretProvider,
        prompt: InstructionPrompt,
        key_generator: KeyGenerator | None = None,
        csr_encoder: CsrEncoder = encode_certificate_request,
        bundle_builder: BundleBuilder = build_key_bundle,
    ) -> None:
        self.options = options
        self.ca_client = ca_client
        self.challenge_provider = challenge_provider
        self.server_configuration = server_configuration
        self.secret_provider = secret_provider
        self.prompt = prompt
        self.key_generator = key_generator or partial(generate_private_key, options.key_size)
        self.csr_encoder = csr_encoder
        self.bundle_builder = bundle_builder

        self._bundle_password = options.bundle_password or None
        self._password_lock = threading.Lock()
        self._prompt_lock = threading.Lock()
        self._install_lock = threading.Lock()

    def run(self) -> RunReport:
        """Run registration and every domain.

        Returns:
            RunReport; ``abort_reason`` is set when registration failed and no
            domain was processed
        """
        report = RunReport()
        try:
            report.registration, report.terms_update = self.register()
        except Exception as e:
            LOGGER.error("Registration failed, aborting run: %s", e)
            report.abort_reason = f"registration failed: {e}"
            return report

        report.outcomes = self._process_domains()

        installed = sum(1 for outcome in report.outcomes if outcome.succeeded)
        LOGGER.info(
            "Run complete: %d of %d domains installed", installed, len(report.outcomes)
        )
        if report.failed_domains:
            LOGGER.warning("Domains not installed: %s", report.failed_domains)
        return report

    def register(self) -> tuple[Registration, TermsUpdate]:
        """Register (or look up) the account and reconcile the terms of service.

        A terms URI mismatch is logged and skips the update; it does not raise.

        Returns:
            Registration in effect and what happened to the terms update

        Raises:
            Exception: Whatever the CA client raises; callers treat it as fatal
        """
        options = self.options
        agreement = options.terms_of_service_uri if options.accept_terms_of_service else None

        registration = self.ca_client.register(agreement, options.contacts)
        LOGGER.info("Terms of service: %s", registration.agreement)
        LOGGER.debug("Created at: %s", registration.created_at)
        LOGGER.debug("Id: %s", registration.id)
        LOGGER.debug("Contact: %s", ", ".join(registration.contact))
        LOGGER.debug("Initial Ip: %s", registration.initial_ip)

        if not options.accept_terms_of_service:
            return registration, TermsUpdate.NOT_REQUESTED
        if not registration.location:
            return registration, TermsUpdate.NO_LOCATION

        LOGGER.info("Accepting terms of service")
        if registration.agreement != options.terms_of_service_uri:
            LOGGER.error(
                "Cannot accept terms of service. The terms of service uri is '%s', "
                "expected it to be '%s'.",
                registration.agreement,
                options.terms_of_service_uri,
            )
            return registration, TermsUpdate.SKIPPED_MISMATCH

        updated = self.ca_client.update_registration(
            registration.location, registration.agreement, options.contacts
        )
        return updated, TermsUpdate.UPDATED

    def _process_domains(self) -> list[DomainOutcome]:
        domains = self.options.domains
        if self.options.max_workers == 1 or len(domains) <= 1:
            return [self.process_domain(domain) for domain in domains]

        # Occurrences of one domain share artifact paths, so they run in order
        # on a single worker.
        positions: dict[str, list[int]] = {}
        for index, domain in enumerate(domains):
            positions.setdefault(domain, []).append(index)

        outcomes: list[DomainOutcome | None] = [None] * len(domains)
        with ThreadPoolExecutor(max_workers=self.options.max_workers) as pool:
            grouped = pool.map(self._process_occurrences, positions, map(len, positions.values()))
            for indices, group_outcomes in zip(positions.values(), grouped):
                for index, outcome in zip(indices, group_outcomes):
                    outcomes[index] = outcome
        return [outcome for outcome in outcomes if outcome is not None]

    def _process_occurrences(self, domain: str, count: int) -> list[DomainOutcome]:
        return [self.process_domain(domain) for _ in range(count)]

    def process_domain(self, domain: str) -> DomainOutcome:
        """Take one domain from authorization to installation.

        Never raises; every failure ends up in the returned outcome.
        """
        LOGGER.info("Processing domain %s", domain, extra={"domain": domain})

        authorization = self._authorize(domain)
        if isinstance(authorization, DomainOutcome):
            return authorization

        issued = self._request_certificate(domain, authorization)
        if isinstance(issued, DomainOutcome):
            return issued
        key, artifact = issued

        cert_path = self._save_certificate(artifact)
        if isinstance(cert_path, DomainOutcome):
            return cert_path

        outcome = DomainOutcome(
            domain=domain,
            phase=DomainPhase.PERSISTED,
            state=DomainState.FAILED,
            certificate_path=cert_path,
        )
        # Installation does not need the exportable bundle; a bundle error
        # is only a warning on the outcome.
        outcome.bundle_path = self._save_key_bundle(domain, key, cert_path, outcome)
        self._install(domain, key, cert_path, outcome)
        return outcome

    def _authorize(self, domain: str) -> Authorization | DomainOutcome:
        try:
            authorization = self.ca_client.new_authorization(domain)
        except Exception as e:
            return self._failed(domain, DomainPhase.AUTHORIZING, f"authorization request failed: {e}")

        try:
            challenge = self.challenge_provider.accept_challenge(
                domain, self.options.install_site, authorization
            )
            if challenge is None:
                return self._rejected(domain, NO_CHALLENGE_AVAILABLE)

            try:
                with self._prompt_lock:
                    self.prompt.confirm(domain, challenge.instructions)
            except BaseException:
                # complete() is never reached
                challenge.discard()
                raise

            result = challenge.complete()
        except Exception as e:
            return self._failed(domain, DomainPhase.AUTHORIZING, f"challenge failed: {e}")

        status = result.status if result is not None else ""
        if status.lower() != "valid":
            reason = f"challenge status '{status}'"
            if result is not None and result.error:
                reason = f"{reason}: {result.error}"
            return self._rejected(domain, reason)

        LOGGER.info("Domain %s authorized", domain, extra={"domain": domain})
        return authorization

    def _request_certificate(
        self, domain: str, authorization: Authorization
    ) -> tuple[RSAPrivateKey, CertificateArtifact] | DomainOutcome:
        """Generate a fresh key for the domain and get a certificate issued for it."""
        try:
            key = self.key_generator()
        except Exception as e:
            return self._failed(domain, DomainPhase.AUTHORIZED, f"key generation failed: {e}")

        try:
            csr = self.csr_encoder(domain, key)
            artifact = self.ca_client.new_certificate(csr, authorization)
        except Exception as e:
            return self._failed(domain, DomainPhase.REQUESTING, f"certificate request failed: {e}")

        LOGGER.info("Certificate issued for %s", domain, extra={"domain": domain})
        return key, artifact

    def _save_certificate(self, artifact: CertificateArtifact) -> Path | DomainOutcome:
        path = certificate_path(artifact.domain, self.options.output_dir)
        LOGGER.info(
            "Saving certificate returned by ACME server to %s",
            path,
            extra={"domain": artifact.domain},
        )
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(artifact.data)
        except OSError as e:
            return self._failed(artifact.domain, DomainPhase.ISSUED, f"could not save certificate: {e}")
        return path

    def _save_key_bundle(
        self, domain: str, key: RSAPrivateKey, cert_path: Path, outcome: DomainOutcome
    ) -> Path | None:
        LOGGER.info("Generating pfx file with certificate and private key", extra={"domain": domain})
        try:
            password = self._obtain_bundle_password()
            bundle = self.bundle_builder(
                key, cert_path, password, bundle_path(domain, self.options.output_dir)
            )
        except Exception as e:
            LOGGER.error("Could not create pfx file: %s", e, extra={"domain": domain})
            outcome.warnings.append(f"key bundle failed: {e}")
            return None

        LOGGER.info("Pfx file saved to %s", bundle.path, extra={"domain": domain})
        return bundle.path

    def _obtain_bundle_password(self) -> str:
        """Return the run's bundle password, asking the provider only once."""
        with self._password_lock:
            if self._bundle_password is None:
                password = self.secret_provider.obtain_bundle_password()
                if not password:
                    raise ValueError("bundle password must not be empty")
                self._bundle_password = password
            return self._bundle_password

    def _install(
        self, domain: str, key: RSAPrivateKey, cert_path: Path, outcome: DomainOutcome
    ) -> None:
        options = self.options
        try:
            with self._install_lock:
                handle = self.server_configuration.install_certificate_with_private_key(
                    cert_path, options.store_name, key
                )
                self.server_configuration.configure_server(
                    domain, handle, options.store_name, options.install_site, options.install_binding
                )
        except Exception as e:
            LOGGER.error("Installation failed for %s: %s", domain, e, extra={"domain": domain})
            outcome.error = f"installation failed: {e}"
            return

        outcome.certificate_handle = handle
        outcome.phase = DomainPhase.INSTALLED
        outcome.state = DomainState.INSTALLED
        LOGGER.info("Domain %s installed", domain, extra={"domain": domain})

    def _failed(self, domain: str, phase: DomainPhase, reason: str) -> DomainOutcome:
        LOGGER.error("Domain %s failed: %s", domain, reason, extra={"domain": domain})
        return DomainOutcome(domain=domain, phase=phase, state=DomainState.FAILED, error=reason)

    def _rejected(self, domain: str, reason: str) -> DomainOutcome:
        LOGGER.error(
            "Authorization for domain %s failed: %s", domain, reason, extra={"domain": domain}
        )
        return DomainOutcome(
            domain=domain,
            phase=DomainPhase.AUTHORIZING,
            state=DomainState.REJECTED,
            error=reason,
        )
