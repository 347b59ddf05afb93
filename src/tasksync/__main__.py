"""Allow ``python -m tasksync``."""

from tasksync.cli import main

main()
