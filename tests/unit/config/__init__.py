"""Test package marker."""
