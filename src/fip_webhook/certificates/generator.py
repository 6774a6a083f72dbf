"""
Key and certificate request generation for the webhook serving identity.

The webhook serves TLS under the in-cluster DNS names of its own Service.
This module builds the RSA key and the PKCS#10 request that is handed to the
cluster certificate authority, and parses the issued certificate.
"""

from dataclasses import dataclass
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from fip_webhook.constants import (
    CERT_COMMON_NAME_PREFIX,
    CERT_ORGANIZATION,
    RSA_KEY_SIZE,
    RSA_PUBLIC_EXPONENT,
    TLS_SECRET_SUFFIX,
)
from fip_webhook.errors import CertificateUnavailable


@dataclass(frozen=True)
class ServiceIdentity:
    """DNS identity of the webhook Service."""

    name: str
    namespace: str

    @property
    def csr_name(self) -> str:
        """Deterministic name of the CertificateSigningRequest."""
        return f"{self.name}.{self.namespace}.svc"

    @property
    def secret_name(self) -> str:
        """Deterministic name of the TLS secret."""
        return f"{self.name}{TLS_SECRET_SUFFIX}"

    @property
    def common_name(self) -> str:
        return f"{CERT_COMMON_NAME_PREFIX}{self.csr_name}"

    @property
    def dns_names(self) -> list[str]:
        return [
            self.name,
            f"{self.name}.{self.namespace}",
            self.csr_name,
            f"{self.csr_name}.cluster.local",
        ]


@dataclass(frozen=True)
class TLSIdentity:
    """A private key and the leaf certificate issued for it, both PEM encoded."""

    private_key_pem: bytes
    certificate_pem: bytes

    @property
    def not_after(self) -> datetime:
        return parse_certificate_expiration(self.certificate_pem)


def generate_private_key() -> rsa.RSAPrivateKey:
    """Generate a fresh RSA key for the serving certificate."""
    return rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )


def encode_private_key(key: rsa.RSAPrivateKey) -> bytes:
    """Encode a private key as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def build_signing_request(identity: ServiceIdentity, key: rsa.RSAPrivateKey) -> bytes:
    """
    Build a PEM encoded certificate signing request for the webhook Service.

    The subject follows the kubelet-serving signer's expectations
    (``system:node:`` common name in the ``system:nodes`` organization) and
    the request carries every DNS name the Service is reachable under.

    Args:
        identity: Service identity to request a certificate for
        key: Private key the request is signed with

    Returns:
        PEM encoded PKCS#10 request
    """
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, identity.common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, CERT_ORGANIZATION),
        ]
    )
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName(name) for name in identity.dns_names]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.PEM)


def parse_certificate_expiration(certificate_pem: bytes) -> datetime:
    """
    Read the not-after timestamp of a PEM encoded certificate.

    Args:
        certificate_pem: PEM encoded certificate

    Returns:
        Timezone-aware (UTC) expiration timestamp

    Raises:
        CertificateUnavailable: If the data is empty or not a valid certificate
    """
    if not certificate_pem:
        raise CertificateUnavailable("certificate is empty")
    try:
        cert = x509.load_pem_x509_certificate(certificate_pem)
    except ValueError as e:
        raise CertificateUnavailable(f"cannot parse TLS PEM data: {e}", cause=e) from e
    return cert.not_valid_after_utc
