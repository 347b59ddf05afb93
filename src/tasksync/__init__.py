"""tasksync: keep tracker issues in step with a computed task graph."""

__version__ = "1.0.0"
