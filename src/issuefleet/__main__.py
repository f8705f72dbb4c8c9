"""Allow ``python -m issuefleet``."""

from issuefleet.cli import main

main()
