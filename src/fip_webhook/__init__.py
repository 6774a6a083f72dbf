"""
Rancher FIP Manager Webhook - validating admission webhook for floating IPs.

This package provides:
- Validation of FloatingIP and FloatingIPPool custom resources
- Per-project floating IP quota enforcement
- A self-managed TLS serving certificate issued through the cluster CA
- Automatic certificate renewal with a controlled server restart
"""

__version__ = "0.1.0"
