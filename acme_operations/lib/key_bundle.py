"""PKCS#12 key bundle export."""

from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import pkcs12

from .cert_utils import load_certificate_chain
from .models import KeyBundle


def build_key_bundle(
    private_key: RSAPrivateKey,
    certificate_path: Path,
    password: str,
    bundle_path: Path,
) -> KeyBundle:
    """Write a password-protected PKCS#12 bundle with the key and issued chain.

    Args:
        private_key: Key pair the certificate was issued for
        certificate_path: Certificate file written from the CA response
        password: Bundle password, must not be empty
        bundle_path: Output path, overwritten when present

    Returns:
        KeyBundle with the written path and its password

    Raises:
        ValueError: If the password is empty or the certificate does not
            match the key
        FileNotFoundError: If the certificate file does not exist
    """
    if not password:
        raise ValueError("bundle password must not be empty")

    chain = load_certificate_chain(certificate_path.read_bytes())
    leaf, intermediates = chain[0], chain[1:]

    if leaf.public_key().public_numbers() != private_key.public_key().public_numbers():
        raise ValueError(f"certificate in {certificate_path} does not match private key")

    name = certificate_path.stem.encode("utf-8")
    data = pkcs12.serialize_key_and_certificates(
        name=name,
        key=private_key,
        cert=leaf,
        cas=intermediates or None,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
    )

    bundle_path.parent.mkdir(parents=True, exist_ok=True)
    bundle_path.write_bytes(data)
    return KeyBundle(path=bundle_path, password=password)
