"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- FloatingIP requests
- FloatingIPPool definitions
- FloatingIPProjectQuota objects
"""

from .floatingip import (
    FloatingIP,
    FloatingIPPool,
    FloatingIPProjectQuota,
)

__all__ = ["FloatingIP", "FloatingIPPool", "FloatingIPProjectQuota"]
