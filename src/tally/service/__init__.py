"""The invoicing HTTP service: one fixed welcome response on one port."""

from tally.service.app import create_app, main

__all__ = ["create_app", "main"]
