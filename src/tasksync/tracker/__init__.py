"""Remote issue tracker adapters and the issue body wire format."""
