"""Cashier terminal service for IoT shopping carts."""

__version__ = "0.1.0"
