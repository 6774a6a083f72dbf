"""Test fixtures for floating IP resources."""
