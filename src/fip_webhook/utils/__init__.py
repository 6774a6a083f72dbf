"""Utility helpers for the FIP manager webhook."""

from .kubernetes import load_kube_configuration

__all__ = ["load_kube_configuration"]
