"""Rewriting reverse proxy service."""
