"""CSR encoding for domain certificates."""

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509 import oid


def build_certificate_request(
    domain: str, private_key: RSAPrivateKey
) -> x509.CertificateSigningRequest:
    """Build a CSR for a single domain.

    The domain is used as CN and as the only dNSName in the
    SubjectAlternativeName extension, which is what ACME CAs validate.

    Args:
        domain: Domain name the certificate is requested for
        private_key: Fresh key pair; the CSR carries its public half

    Returns:
        CSR signed with the private key (SHA-256)
    """
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(oid.NameOID.COMMON_NAME, domain)]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(domain)]),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )


def encode_certificate_request(domain: str, private_key: RSAPrivateKey) -> bytes:
    """Encode a domain CSR as DER bytes, the form ACME finalize expects."""
    csr = build_certificate_request(domain, private_key)
    return csr.public_bytes(serialization.Encoding.DER)
