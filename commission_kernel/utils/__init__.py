"""Shared utilities for the commission kernel."""
