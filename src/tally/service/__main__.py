"""``python -m tally.service`` -- run the invoicing service."""

from tally.service.app import main

main()
