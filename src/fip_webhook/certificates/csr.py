"""
CertificateSigningRequest exchange with the cluster certificate authority.

The webhook acts with both requester and approver capability: it submits a
request for its own serving certificate, approves that request itself and
then reads back the certificate issued by the kubelet-serving signer.
"""

import asyncio
import base64
import logging
from datetime import UTC, datetime

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from fip_webhook.constants import (
    CSR_APPROVAL_MESSAGE,
    CSR_APPROVAL_REASON,
    CSR_FETCH_ATTEMPTS,
    CSR_GROUPS,
    CSR_SETTLE_SECONDS,
    CSR_SIGNER_NAME,
    CSR_USAGES,
)
from fip_webhook.errors import CertificateSigningError, KubernetesAPIError

logger = logging.getLogger(__name__)

_TERMINAL_FAILURE_CONDITIONS = {"Denied", "Failed"}


class CSRExchange:
    """Submits, approves and collects a single named CertificateSigningRequest."""

    def __init__(
        self,
        csr_name: str,
        k8s_client: client.ApiClient | None = None,
        settle_seconds: float = CSR_SETTLE_SECONDS,
        fetch_attempts: int = CSR_FETCH_ATTEMPTS,
    ):
        """
        Initialize CSR exchange.

        Args:
            csr_name: Deterministic name of the CertificateSigningRequest
            k8s_client: Optional Kubernetes API client
            settle_seconds: Delay before each read of the issued certificate
            fetch_attempts: Reads attempted before giving up on the certificate
        """
        self.csr_name = csr_name
        self.k8s_client = k8s_client
        self.settle_seconds = settle_seconds
        self.fetch_attempts = max(1, fetch_attempts)
        self._certificates_api: client.CertificatesV1Api | None = None

    @property
    def certificates_api(self) -> client.CertificatesV1Api:
        """Get CertificatesV1Api client."""
        if self._certificates_api is None:
            if self.k8s_client:
                self._certificates_api = client.CertificatesV1Api(self.k8s_client)
            else:
                self._certificates_api = client.CertificatesV1Api()
        return self._certificates_api

    async def get(self) -> client.V1CertificateSigningRequest | None:
        """
        Retrieve the CertificateSigningRequest.

        Returns:
            CSR object if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        try:
            return self.certificates_api.read_certificate_signing_request(
                name=self.csr_name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read signing request {self.csr_name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"Failed to read signing request {self.csr_name}: {e}"
            ) from e

    async def exists(self) -> bool:
        return await self.get() is not None

    async def delete(self) -> None:
        """
        Delete the CertificateSigningRequest, ignoring one that is already gone.

        Raises:
            KubernetesAPIError: If deletion fails
        """
        try:
            self.certificates_api.delete_certificate_signing_request(name=self.csr_name)
            logger.info(f"Deleted signing request {self.csr_name}")
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesAPIError(
                f"Failed to delete signing request {self.csr_name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"Failed to delete signing request {self.csr_name}: {e}"
            ) from e

    async def submit(self, request_pem: bytes) -> client.V1CertificateSigningRequest:
        """
        Create the CertificateSigningRequest for the kubelet-serving signer.

        Args:
            request_pem: PEM encoded PKCS#10 request

        Returns:
            Created CSR object

        Raises:
            KubernetesAPIError: If creation fails
        """
        body = client.V1CertificateSigningRequest(
            metadata=client.V1ObjectMeta(name=self.csr_name),
            spec=client.V1CertificateSigningRequestSpec(
                groups=list(CSR_GROUPS),
                request=base64.b64encode(request_pem).decode(),
                signer_name=CSR_SIGNER_NAME,
                usages=list(CSR_USAGES),
            ),
        )
        try:
            created = self.certificates_api.create_certificate_signing_request(body=body)
        except ApiException as e:
            raise KubernetesAPIError(
                f"error while creating signing request {self.csr_name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"error while creating signing request {self.csr_name}: {e}"
            ) from e
        logger.info(f"Created signing request {self.csr_name}")
        return created

    async def approve(
        self, csr: client.V1CertificateSigningRequest
    ) -> client.V1CertificateSigningRequest:
        """
        Approve the CertificateSigningRequest on behalf of the webhook.

        Args:
            csr: The CSR object as returned by ``submit``

        Returns:
            Updated CSR object

        Raises:
            KubernetesAPIError: If the approval update fails
        """
        condition = client.V1CertificateSigningRequestCondition(
            type="Approved",
            status="True",
            reason=CSR_APPROVAL_REASON,
            message=CSR_APPROVAL_MESSAGE,
            last_update_time=datetime.now(UTC),
        )
        status = csr.status or client.V1CertificateSigningRequestStatus()
        status.conditions = [*(status.conditions or []), condition]
        csr.status = status

        try:
            approved = self.certificates_api.replace_certificate_signing_request_approval(
                name=self.csr_name, body=csr
            )
        except ApiException as e:
            raise KubernetesAPIError(
                f"error while approving signing request {self.csr_name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"error while approving signing request {self.csr_name}: {e}"
            ) from e
        logger.info(f"Approved signing request {self.csr_name}")
        return approved

    async def wait_for_certificate(self) -> bytes:
        """
        Read back the certificate issued for the approved request.

        Each read is preceded by the settle delay, giving the signer time to
        populate ``status.certificate``.

        Returns:
            PEM encoded certificate

        Raises:
            CertificateSigningError: If the request was denied or failed, or no
                certificate was issued within the configured attempts
            KubernetesAPIError: If reading the request fails
        """
        for attempt in range(1, self.fetch_attempts + 1):
            await asyncio.sleep(self.settle_seconds)

            csr = await self.get()
            if csr is None:
                raise CertificateSigningError(
                    f"signing request {self.csr_name} disappeared before it was signed"
                )

            status = csr.status
            for condition in (status.conditions if status else None) or []:
                if condition.type in _TERMINAL_FAILURE_CONDITIONS:
                    raise CertificateSigningError(
                        f"signing request {self.csr_name} was {condition.type.lower()}: "
                        f"{condition.message or condition.reason}",
                        retryable=False,
                    )

            if status and status.certificate:
                return base64.b64decode(status.certificate)

            logger.debug(
                f"Signing request {self.csr_name} not issued yet "
                f"(attempt {attempt}/{self.fetch_attempts})"
            )

        raise CertificateSigningError(
            f"no certificate issued for signing request {self.csr_name}"
        )

    async def exchange(self, request_pem: bytes) -> bytes:
        """
        Run a full submit, approve and collect cycle.

        The request is removed once its certificate has been collected. A
        request left behind by a failed cycle is cleared by the next one.

        Args:
            request_pem: PEM encoded PKCS#10 request

        Returns:
            PEM encoded certificate issued by the cluster CA
        """
        csr = await self.submit(request_pem)
        await self.approve(csr)
        certificate = await self.wait_for_certificate()

        try:
            await self.delete()
        except KubernetesAPIError as e:
            logger.warning(f"Could not remove signing request {self.csr_name}: {e}")

        return certificate
