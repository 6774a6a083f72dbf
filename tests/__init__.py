"""
Tests package - unit test suite for the FIP manager webhook.

Contains:
- unit/: Unit tests for individual components
- fixtures/: Sample floating IP resources and admission reviews
- utils/: TLS helpers for certificate lifecycle tests
"""
