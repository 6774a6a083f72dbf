"""
Certificate lifecycle for the webhook serving identity.

Contains:
- generator: RSA key and certificate request generation
- csr: CertificateSigningRequest submit/approve/collect exchange
- secret_store: TLS secret persistence and local file mirroring
- manager: ensure-fresh issuing and renewal
- scheduler: timed renewal with admission server restart
"""

from .csr import CSRExchange
from .generator import ServiceIdentity, TLSIdentity
from .manager import CertificateManager
from .scheduler import CertificateRenewalScheduler, next_interval_minutes
from .secret_store import TLSSecretStore

__all__ = [
    "CSRExchange",
    "CertificateManager",
    "CertificateRenewalScheduler",
    "ServiceIdentity",
    "TLSIdentity",
    "TLSSecretStore",
    "next_interval_minutes",
]
