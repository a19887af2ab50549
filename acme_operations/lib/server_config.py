"""Local certificate store installation and site binding."""

import json
import os
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .cert_utils import (
    certificate_thumbprint,
    extract_certificate_metadata,
    load_certificate_chain,
    serialize_certificate,
    serialize_private_key,
)
from .logging_config import get_logger

logger = get_logger(__name__)

BINDINGS_FILE = "bindings.json"


def _write_private(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)


class LocalStoreInstaller:
    """Directory-backed certificate store for a local TLS server.

    Layout::

        <root>/<store>/<THUMBPRINT>.pem   certificate chain
        <root>/<store>/<THUMBPRINT>.key   encrypted private key (mode 0600)
        <root>/<store>/<THUMBPRINT>.json  certificate metadata
        <root>/bindings.json              site -> binding -> certificate

    Keys are written as PKCS8 PEM encrypted with the store passphrase.
    Store directories are created with mode 0700. Callers running several
    installs concurrently must serialize calls; the orchestrator holds a
    lock around install + configure.
    """

    def __init__(self, root: Path, passphrase: str) -> None:
        """Initialize installer.

        Args:
            root: Store root directory
            passphrase: Passphrase protecting every key in the store

        Raises:
            ValueError: If the passphrase is empty
        """
        if not passphrase:
            raise ValueError("store passphrase must not be empty")
        self.root = root
        self._passphrase = passphrase

    @property
    def bindings_path(self) -> Path:
        return self.root / BINDINGS_FILE

    def install_certificate_with_private_key(
        self, certificate_path: Path, store_name: str, private_key: RSAPrivateKey
    ) -> str:
        """Add a certificate and its key to a store.

        Args:
            certificate_path: Certificate file as written from the CA response
            store_name: Store directory name, e.g. ``my``
            private_key: Key the certificate was issued for

        Returns:
            Certificate thumbprint, used as the store handle

        Raises:
            FileNotFoundError: If the certificate file does not exist
            ValueError: If the certificate does not match the key
        """
        chain = load_certificate_chain(certificate_path.read_bytes())
        leaf = chain[0]
        if leaf.public_key().public_numbers() != private_key.public_key().public_numbers():
            raise ValueError(f"certificate in {certificate_path} does not match private key")

        thumbprint = certificate_thumbprint(leaf)
        store_dir = self.root / store_name
        store_dir.mkdir(parents=True, exist_ok=True)
        store_dir.chmod(0o700)

        (store_dir / f"{thumbprint}.pem").write_bytes(
            b"".join(serialize_certificate(cert) for cert in chain)
        )
        _write_private(
            store_dir / f"{thumbprint}.key", serialize_private_key(private_key, self._passphrase)
        )
        (store_dir / f"{thumbprint}.json").write_text(
            json.dumps(extract_certificate_metadata(leaf), indent=2)
        )

        logger.info("Installed certificate %s into store %s", thumbprint, store_name)
        return thumbprint

    def configure_server(
        self,
        domain: str,
        certificate_handle: str,
        store_name: str,
        site: str,
        binding: str,
    ) -> None:
        """Bind an installed certificate to a site binding.

        An existing binding for the same site and binding string is replaced.

        Raises:
            FileNotFoundError: If the certificate is not in the store
        """
        certificate_file = self.root / store_name / f"{certificate_handle}.pem"
        if not certificate_file.exists():
            raise FileNotFoundError(f"certificate {certificate_handle} not in store {store_name}")

        bindings = self.load_bindings()
        bindings.setdefault(site, {})[binding] = {
            "domain": domain,
            "store": store_name,
            "thumbprint": certificate_handle,
            "certificate": str(certificate_file),
            "key": str(certificate_file.with_suffix(".key")),
        }

        self.root.mkdir(parents=True, exist_ok=True)
        tmp_path = self.bindings_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(bindings, indent=2, sort_keys=True))
        tmp_path.replace(self.bindings_path)

        logger.info(
            "Bound %s to site %s (%s)", certificate_handle, site, binding, extra={"domain": domain}
        )

    def load_bindings(self) -> dict[str, dict[str, dict[str, str]]]:
        """Return the current site bindings, empty when none were written."""
        if not self.bindings_path.exists():
            return {}
        return json.loads(self.bindings_path.read_text())
