"""Delegated signing bridge for sponsored smart-account operations."""

__version__ = "0.1.0"
