"""Allow running as python -m toolcore.cli."""

from toolcore.cli import main

main()
