"""Inventory Service: stock CRUD and event-driven stock reservations."""

__version__ = "0.1.0"
