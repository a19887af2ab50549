"""Certificate utility functions for key generation, serialization, and metadata extraction."""

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

PEM_CERTIFICATE_MARKER = b"-----BEGIN CERTIFICATE-----"


def generate_private_key(key_size: int = 2048) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: RSAPrivateKey, password: str | None = None) -> bytes:
    """Serialize private key to PEM format (PKCS8).

    Unencrypted unless ``password`` is given, in which case the best
    available encryption is used.
    """
    if password is not None:
        if not password:
            raise ValueError("key password must not be empty")
        encryption: serialization.KeySerializationEncryption = serialization.BestAvailableEncryption(
            password.encode()
        )
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def deserialize_private_key(pem_data: bytes, password: str | None = None) -> RSAPrivateKey:
    """Deserialize private key from PEM bytes."""
    key = serialization.load_pem_private_key(
        pem_data, password=password.encode() if password is not None else None
    )
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("expected RSA private key")
    return key


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def load_certificate_chain(data: bytes) -> list[x509.Certificate]:
    """Load the certificates in a CA response, leaf first.

    ACME servers return a PEM chain; older servers returned a single DER
    certificate. Both are accepted.

    Raises:
        ValueError: If the data holds no certificate
    """
    if PEM_CERTIFICATE_MARKER in data:
        chain = x509.load_pem_x509_certificates(data)
    else:
        chain = [x509.load_der_x509_certificate(data)]
    if not chain:
        raise ValueError("no certificate found")
    return chain


def certificate_thumbprint(cert: x509.Certificate) -> str:
    """Return the SHA-1 thumbprint as upper-case hex, the usual store handle."""
    return cert.fingerprint(hashes.SHA1()).hex().upper()


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def extract_certificate_metadata(cert: x509.Certificate) -> dict[str, str]:
    """Extract certificate metadata for the store index.

    Returns:
        Dict with serialNumber, subject, notBefore and expiry (ISO 8601)
    """
    return {
        "serialNumber": get_certificate_serial_hex(cert),
        "subject": cert.subject.rfc4514_string(),
        "notBefore": cert.not_valid_before_utc.isoformat(),
        "expiry": cert.not_valid_after_utc.isoformat(),
    }
