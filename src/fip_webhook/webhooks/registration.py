"""
Registration of the ValidatingWebhookConfiguration.

The configuration routes FloatingIP creations and FloatingIPPool creations
and updates to this webhook's Service. It is created once; an existing
configuration with the same name is left untouched.
"""

import base64
import logging

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from fip_webhook.constants import (
    CA_BUNDLE_CONFIGMAP_KEY,
    CA_BUNDLE_CONFIGMAP_NAME,
    CA_BUNDLE_CONFIGMAP_NAMESPACE,
    FIP_API_GROUP,
    FIP_API_VERSION,
    FLOATINGIP_PLURAL,
    FLOATINGIPPOOL_PLURAL,
    VALIDATE_FLOATINGIP_PATH,
    VALIDATE_FLOATINGIPPOOL_PATH,
)
from fip_webhook.errors import ConfigurationError, KubernetesAPIError

logger = logging.getLogger(__name__)

WEBHOOK_SERVICE_PORT = 8443


class WebhookRegistrar:
    """Creates the ValidatingWebhookConfiguration pointing at this webhook."""

    def __init__(
        self,
        webhook_name: str,
        webhook_namespace: str,
        configuration_name: str,
        k8s_client: client.ApiClient | None = None,
    ):
        self.webhook_name = webhook_name
        self.webhook_namespace = webhook_namespace
        self.configuration_name = configuration_name
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None
        self._admission_api: client.AdmissionregistrationV1Api | None = None

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
    def admission_api(self) -> client.AdmissionregistrationV1Api:
        """Get AdmissionregistrationV1Api client."""
        if self._admission_api is None:
            if self.k8s_client:
                self._admission_api = client.AdmissionregistrationV1Api(self.k8s_client)
            else:
                self._admission_api = client.AdmissionregistrationV1Api()
        return self._admission_api

    async def exists(self) -> bool:
        """
        Check whether the configuration is already registered.

        Raises:
            KubernetesAPIError: If the read fails for reasons other than 404
        """
        try:
            self.admission_api.read_validating_webhook_configuration(
                name=self.configuration_name
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise KubernetesAPIError(
                f"Failed to read ValidatingWebhookConfiguration {self.configuration_name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"Failed to read ValidatingWebhookConfiguration {self.configuration_name}: {e}"
            ) from e

    async def get_ca_bundle(self) -> str:
        """
        Read the cluster root CA used by the API server to verify the webhook.

        Returns:
            PEM encoded CA bundle

        Raises:
            ConfigurationError: If the ConfigMap or its key is missing
            KubernetesAPIError: If the read fails for reasons other than 404
        """
        try:
            configmap = self.v1.read_namespaced_config_map(
                name=CA_BUNDLE_CONFIGMAP_NAME, namespace=CA_BUNDLE_CONFIGMAP_NAMESPACE
            )
        except ApiException as e:
            if e.status == 404:
                raise ConfigurationError(
                    f"CA bundle ConfigMap {CA_BUNDLE_CONFIGMAP_NAMESPACE}/"
                    f"{CA_BUNDLE_CONFIGMAP_NAME} not found"
                ) from e
            raise KubernetesAPIError(
                f"Failed to read CA bundle ConfigMap: {e.reason}", reason=e.reason
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(f"Failed to read CA bundle ConfigMap: {e}") from e

        ca_bundle = (configmap.data or {}).get(CA_BUNDLE_CONFIGMAP_KEY)
        if not ca_bundle:
            raise ConfigurationError(
                f"{CA_BUNDLE_CONFIGMAP_KEY} not found in ConfigMap "
                f"{CA_BUNDLE_CONFIGMAP_NAMESPACE}/{CA_BUNDLE_CONFIGMAP_NAME}"
            )
        return ca_bundle

    def _webhook(
        self,
        prefix: str,
        path: str,
        plural: str,
        operations: list[str],
        scope: str,
        ca_bundle: str,
    ) -> client.V1ValidatingWebhook:
        return client.V1ValidatingWebhook(
            name=f"{prefix}-{self.webhook_name}.{self.webhook_namespace}.svc",
            namespace_selector=client.V1LabelSelector(),
            rules=[
                client.V1RuleWithOperations(
                    api_groups=[FIP_API_GROUP],
                    api_versions=[FIP_API_VERSION],
                    operations=operations,
                    resources=[plural],
                    scope=scope,
                )
            ],
            side_effects="None",
            client_config=client.AdmissionregistrationV1WebhookClientConfig(
                service=client.AdmissionregistrationV1ServiceReference(
                    name=self.webhook_name,
                    namespace=self.webhook_namespace,
                    path=path,
                    port=WEBHOOK_SERVICE_PORT,
                ),
                ca_bundle=base64.b64encode(ca_bundle.encode()).decode(),
            ),
            admission_review_versions=["v1"],
        )

    def build_configuration(
        self, ca_bundle: str
    ) -> client.V1ValidatingWebhookConfiguration:
        """Build the configuration body for both validated resources."""
        return client.V1ValidatingWebhookConfiguration(
            metadata=client.V1ObjectMeta(name=self.configuration_name),
            webhooks=[
                self._webhook(
                    "floatingip",
                    VALIDATE_FLOATINGIP_PATH,
                    FLOATINGIP_PLURAL,
                    ["CREATE"],
                    "Namespaced",
                    ca_bundle,
                ),
                self._webhook(
                    "floatingippool",
                    VALIDATE_FLOATINGIPPOOL_PATH,
                    FLOATINGIPPOOL_PLURAL,
                    ["CREATE", "UPDATE"],
                    "Cluster",
                    ca_bundle,
                ),
            ],
        )

    async def ensure(self) -> bool:
        """
        Create the configuration when it is not registered yet.

        Returns:
            True if the configuration was created, False if it already existed

        Raises:
            ConfigurationError: If the cluster CA bundle is unavailable
            KubernetesAPIError: If the API calls fail
        """
        if await self.exists():
            logger.info(
                f"ValidatingWebhookConfiguration {self.configuration_name} already exists"
            )
            return False

        body = self.build_configuration(await self.get_ca_bundle())
        try:
            self.admission_api.create_validating_webhook_configuration(body=body)
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to create ValidatingWebhookConfiguration {self.configuration_name}: {e.reason}",
                reason=e.reason,
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(
                f"Failed to create ValidatingWebhookConfiguration {self.configuration_name}: {e}"
            ) from e

        logger.info(f"Created ValidatingWebhookConfiguration {self.configuration_name}")
        return True


async def ensure_validating_webhook_configuration(
    webhook_name: str,
    webhook_namespace: str,
    configuration_name: str,
    k8s_client: client.ApiClient | None = None,
) -> bool:
    """Register the webhook with the API server if needed."""
    registrar = WebhookRegistrar(
        webhook_name, webhook_namespace, configuration_name, k8s_client=k8s_client
    )
    return await registrar.ensure()
