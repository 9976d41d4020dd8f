"""Test doubles for Discord objects."""
