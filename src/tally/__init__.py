"""
Tally - a small invoicing HTTP service and the tooling that containerizes it.

- tally.service: the HTTP service (one fixed response on one port)
- tally.deploy: build recipes, container runtime wrapper, compose recipes
  and the sequential startup workflow
- tally.core: logging, errors, settings, env-file parsing
- tally.cli: the ``tally`` command
"""

__version__ = "0.1.0"
