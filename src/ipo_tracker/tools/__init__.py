"""Outbound notification tools."""
