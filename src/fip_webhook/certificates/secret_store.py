"""
Persistence of the webhook serving identity.

The key and certificate live in a ``kubernetes.io/tls`` secret so that a
restarted webhook recovers its identity, and are mirrored to two local files
that the HTTPS admission server loads on (re)start.
"""

import base64
import logging
import os
from pathlib import Path

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from fip_webhook.constants import (
    TLS_CERT_FIELD,
    TLS_CERT_FILE_MODE,
    TLS_KEY_FIELD,
    TLS_KEY_FILE_MODE,
    TLS_SECRET_TYPE,
)
from fip_webhook.errors import CertificateUnavailable, KubernetesAPIError

from .generator import TLSIdentity

logger = logging.getLogger(__name__)


class TLSSecretStore:
    """Stores one TLS identity in a named secret and on the local filesystem."""

    def __init__(
        self,
        name: str,
        namespace: str,
        cert_dir: Path,
        k8s_client: client.ApiClient | None = None,
    ):
        """
        Initialize the secret store.

        Args:
            name: Secret name
            namespace: Secret namespace
            cert_dir: Directory the key and certificate files are written to
            k8s_client: Optional Kubernetes API client
        """
        self.name = name
        self.namespace = namespace
        self.cert_dir = Path(cert_dir)
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    @property
    def key_path(self) -> Path:
        return self.cert_dir / TLS_KEY_FIELD

    @property
    def cert_path(self) -> Path:
        return self.cert_dir / TLS_CERT_FIELD

    async def get(self) -> client.V1Secret | None:
        """
        Retrieve the TLS secret.

        Returns:
            Secret object if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        try:
            return self.v1.read_namespaced_secret(name=self.name, namespace=self.namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read secret {self.namespace}/{self.name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"Failed to read secret {self.namespace}/{self.name}: {e}"
            ) from e

    async def exists(self) -> bool:
        return await self.get() is not None

    async def create(self, identity: TLSIdentity) -> client.V1Secret:
        """
        Store a TLS identity in a new secret.

        Args:
            identity: Key and certificate to store

        Returns:
            Created secret object

        Raises:
            KubernetesAPIError: If creation fails
        """
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(name=self.name, namespace=self.namespace),
            type=TLS_SECRET_TYPE,
            data={
                TLS_KEY_FIELD: base64.b64encode(identity.private_key_pem).decode(),
                TLS_CERT_FIELD: base64.b64encode(identity.certificate_pem).decode(),
            },
        )
        try:
            secret = self.v1.create_namespaced_secret(namespace=self.namespace, body=body)
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to create secret {self.namespace}/{self.name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"Failed to create secret {self.namespace}/{self.name}: {e}"
            ) from e
        logger.info(f"Created TLS secret {self.namespace}/{self.name}")
        return secret

    async def delete(self) -> None:
        """
        Delete the TLS secret.

        Raises:
            KubernetesAPIError: If deletion fails
        """
        try:
            self.v1.delete_namespaced_secret(name=self.name, namespace=self.namespace)
        except ApiException as e:
            raise KubernetesAPIError(
                f"cannot delete webhook secret {self.namespace}/{self.name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"cannot delete webhook secret {self.namespace}/{self.name}: {e}"
            ) from e
        logger.info(f"Deleted TLS secret {self.namespace}/{self.name}")

    async def read_identity(self) -> TLSIdentity:
        """
        Load the stored TLS identity.

        Returns:
            Decoded key and certificate

        Raises:
            CertificateUnavailable: If the secret or one of its fields is missing
            KubernetesAPIError: If the secret cannot be read
        """
        secret = await self.get()
        if secret is None:
            raise CertificateUnavailable(
                f"secret {self.namespace}/{self.name} not found"
            )

        data = secret.data or {}
        if not data.get(TLS_CERT_FIELD):
            raise CertificateUnavailable(f"{TLS_CERT_FIELD} not found in secret")
        if not data.get(TLS_KEY_FIELD):
            raise CertificateUnavailable(f"{TLS_KEY_FIELD} not found in secret")

        try:
            return TLSIdentity(
                private_key_pem=base64.b64decode(data[TLS_KEY_FIELD]),
                certificate_pem=base64.b64decode(data[TLS_CERT_FIELD]),
            )
        except ValueError as e:
            raise CertificateUnavailable(f"cannot decode secret data: {e}", cause=e) from e

    async def write_local_files(self) -> None:
        """
        Mirror the stored identity to the key and certificate files.

        Raises:
            CertificateUnavailable: If no identity is stored
            KubernetesAPIError: If the secret cannot be read
            OSError: If a file cannot be written
        """
        identity = await self.read_identity()

        self.cert_dir.mkdir(parents=True, exist_ok=True)
        _write_file(self.key_path, identity.private_key_pem, TLS_KEY_FILE_MODE)
        _write_file(self.cert_path, identity.certificate_pem, TLS_CERT_FILE_MODE)
        logger.debug(f"Wrote TLS key and certificate to {self.cert_dir}")


def _write_file(path: Path, data: bytes, mode: int) -> None:
    # Replace atomically so the server never loads a half-written file
    tmp_path = path.with_name(f".{path.name}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(tmp_path, mode)
    os.replace(tmp_path, path)
