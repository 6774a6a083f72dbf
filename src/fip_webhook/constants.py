"""
Constants used throughout the FIP manager webhook.

This module defines all constant values used by the webhook including:
- Custom resource coordinates
- Labels and admission paths
- Certificate signing parameters
- Settle delays and file names
"""

# Custom resource coordinates
FIP_API_GROUP = "rancher.k8s.binbash.org"
FIP_API_VERSION = "v1beta1"
FLOATINGIP_PLURAL = "floatingips"
FLOATINGIPPOOL_PLURAL = "floatingippools"
FLOATINGIPPROJECTQUOTA_PLURAL = "floatingipprojectquotas"

# Label carrying the owning project of a FloatingIP
PROJECT_LABEL_KEY = "rancher.k8s.binbash.org/project-name"

# Admission endpoints
VALIDATE_FLOATINGIP_PATH = "/validate-floatingip"
VALIDATE_FLOATINGIPPOOL_PATH = "/validate-floatingippool"
READINESS_PATH = "/readyz"

# Admission review envelope
ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"
INTERNAL_ERROR_MESSAGE = "internal server error"

# Certificate signing
CSR_SIGNER_NAME = "kubernetes.io/kubelet-serving"
CSR_GROUPS = ["system:authenticated"]
CSR_USAGES = ["digital signature", "key encipherment", "server auth"]
CSR_APPROVAL_REASON = "Approved by TLS Service"
CSR_APPROVAL_MESSAGE = "KubeTLS Approved"
CERT_ORGANIZATION = "system:nodes"
CERT_COMMON_NAME_PREFIX = "system:node:"
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

# TLS secret and local files
TLS_SECRET_SUFFIX = "-tls"
TLS_SECRET_TYPE = "kubernetes.io/tls"
TLS_KEY_FIELD = "tls.key"
TLS_CERT_FIELD = "tls.crt"
TLS_KEY_FILE_MODE = 0o600
TLS_CERT_FILE_MODE = 0o644

# Cluster CA bundle used for webhook registration
CA_BUNDLE_CONFIGMAP_NAMESPACE = "kube-system"
CA_BUNDLE_CONFIGMAP_NAME = "kube-root-ca.crt"
CA_BUNDLE_CONFIGMAP_KEY = "ca.crt"

# Settle delays (in seconds)
CSR_SETTLE_SECONDS = 2.0
CSR_FETCH_ATTEMPTS = 3
RESTART_SETTLE_SECONDS = 2.0
QUOTA_SETTLE_SECONDS = 2.0

# Renewal scheduler never arms a timer shorter than this (in minutes)
MINIMUM_RENEWAL_INTERVAL_MINUTES = 1
