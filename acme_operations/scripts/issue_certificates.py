#!/usr/bin/env python3
"""Issue ACME certificates for one or more domains and install them locally."""

import argparse
import json
import os
import sys
from pathlib import Path

from acme_operations.lib.acme_client import AcmeClient, load_or_create_account_key
from acme_operations.lib.challenges import DNS_01, HTTP_01, build_challenge_provider
from acme_operations.lib.config import (
    LETSENCRYPT_STAGING_DIRECTORY_URL,
    RunOptions,
    TransportConfig,
    default_directory_url,
    normalize_contact,
)
from acme_operations.lib.interfaces import SecretProvider
from acme_operations.lib.logging_config import LOGGER, set_verbose
from acme_operations.lib.models import RunReport, RunStatus
from acme_operations.lib.orchestrator import IssuanceOrchestrator
from acme_operations.lib.prompts import ConsoleInstructionPrompt
from acme_operations.lib.secret_providers import ConsolePasswordProvider, SsmSecretProvider
from acme_operations.lib.server_config import LocalStoreInstaller
from acme_operations.lib.ssm_client import SSMClient


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        description="Issue ACME certificates and install them into a local store"
    )
    parser.add_argument("domains", nargs="+", help="Domains to issue certificates for, in order")
    parser.add_argument(
        "--contact",
        required=True,
        help="Account contact, e.g. admin@example.com (mailto: is added when missing)",
    )
    parser.add_argument(
        "--accept-tos",
        action="store_true",
        help="Accept the CA terms of service (requires --terms-of-service-uri)",
    )
    parser.add_argument(
        "--terms-of-service-uri",
        default=None,
        help="Terms of service URI you expect to accept",
    )
    parser.add_argument(
        "--accept-instructions",
        action="store_true",
        help="Do not wait for ENTER after showing challenge instructions",
    )
    parser.add_argument(
        "--bundle-password",
        default=os.environ.get("ACME_BUNDLE_PASSWORD"),
        help="Password for the .pfx key bundles (default: $ACME_BUNDLE_PASSWORD, else prompt)",
    )
    parser.add_argument(
        "--bundle-password-ssm-parameter",
        default=None,
        help="Read the bundle password from this SSM SecureString parameter",
    )
    parser.add_argument(
        "--acme-server",
        default=default_directory_url(),
        help=(
            "ACME directory URL (default: $ACME_DIRECTORY_URL or Let's Encrypt; "
            f"staging: {LETSENCRYPT_STAGING_DIRECTORY_URL})"
        ),
    )
    parser.add_argument(
        "--account-key",
        type=Path,
        default=Path("account.key"),
        help="Account key file, generated when missing (default: account.key)",
    )
    parser.add_argument(
        "--challenge",
        choices=[HTTP_01, DNS_01],
        default=HTTP_01,
        help=f"Challenge type (default: {HTTP_01})",
    )
    parser.add_argument(
        "--webroot",
        default=None,
        help="Webroot for http-01 responses; {site} is replaced with --site",
    )
    parser.add_argument("--site", default="Default Web Site", help="Site to bind the certificate to")
    parser.add_argument("--binding", default="*:443", help="Site binding (default: *:443)")
    parser.add_argument("--store-name", default="my", help="Certificate store name (default: my)")
    parser.add_argument(
        "--store-dir",
        type=Path,
        default=Path("certstore"),
        help="Local certificate store root (default: certstore)",
    )
    parser.add_argument(
        "--store-passphrase",
        default=os.environ.get("ACME_STORE_PASSPHRASE"),
        help=(
            "Passphrase encrypting keys in the local store "
            "(default: $ACME_STORE_PASSPHRASE, else the bundle password)"
        ),
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory for <domain>.cer and <domain>.pfx (default: current directory)",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=1,
        help="Domains processed in parallel after registration (default: 1)",
    )
    parser.add_argument(
        "--ignore-tls-errors",
        action="store_true",
        help="Do not validate TLS certificates of the ACME server",
    )
    parser.add_argument("--timeout", type=float, default=30.0, help="HTTP timeout in seconds")
    parser.add_argument(
        "--poll-timeout",
        type=float,
        default=120.0,
        help="Deadline in seconds for challenge and order polling",
    )
    parser.add_argument("--report", type=Path, default=None, help="Write a JSON run summary here")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def build_secret_provider(args: argparse.Namespace) -> SecretProvider:
    """Select where the bundle password comes from when it was not given directly."""
    if args.bundle_password_ssm_parameter:
        region = os.environ.get("AWS_REGION", "eu-west-2")
        return SsmSecretProvider(args.bundle_password_ssm_parameter, SSMClient(region=region))
    return ConsolePasswordProvider()


def write_report(report: RunReport, path: Path) -> None:
    """Write the machine-readable run summary."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2))


def main(argv: list[str] | None = None) -> int:
    """Run certificate issuance.

    Returns:
        Exit code (0 all domains installed, 1 some domains failed,
        2 aborted before any domain was processed)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.accept_tos and not args.terms_of_service_uri:
        parser.error("--accept-tos requires --terms-of-service-uri")
    if args.challenge == HTTP_01 and not args.webroot:
        parser.error(f"--webroot is required for {HTTP_01}")
    store_passphrase = args.store_passphrase or args.bundle_password
    if not store_passphrase:
        parser.error("--store-passphrase or $ACME_STORE_PASSPHRASE is required to encrypt stored keys")

    set_verbose(args.verbose)

    try:
        options = RunOptions(
            domains=tuple(args.domains),
            contact=normalize_contact(args.contact),
            accept_terms_of_service=args.accept_tos,
            terms_of_service_uri=args.terms_of_service_uri,
            accept_instructions=args.accept_instructions,
            bundle_password=args.bundle_password,
            install_site=args.site,
            install_binding=args.binding,
            store_name=args.store_name,
            ignore_tls_validation_errors=args.ignore_tls_errors,
            output_dir=args.output_dir,
            max_workers=args.max_workers,
        )
        transport = TransportConfig(
            verify_tls=not options.ignore_tls_validation_errors,
            timeout=args.timeout,
            poll_timeout=args.poll_timeout,
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        account_key = load_or_create_account_key(args.account_key)
        client = AcmeClient(args.acme_server, account_key, transport)
        challenge_provider = build_challenge_provider(
            args.challenge, client, transport, webroot=args.webroot
        )
    except Exception as e:
        LOGGER.error("Setup failed: %s", e)
        return int(RunStatus.ABORTED)

    orchestrator = IssuanceOrchestrator(
        options=options,
        ca_client=client,
        challenge_provider=challenge_provider,
        server_configuration=LocalStoreInstaller(args.store_dir, store_passphrase),
        secret_provider=build_secret_provider(args),
        prompt=ConsoleInstructionPrompt(options.accept_instructions),
    )
    report = orchestrator.run()

    if args.report:
        write_report(report, args.report)
        LOGGER.info("Run summary written to %s", args.report)

    return int(report.status)


if __name__ == "__main__":
    sys.exit(main())
