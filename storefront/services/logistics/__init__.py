"""Delivery vehicle assignment."""
