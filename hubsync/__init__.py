"""hubsync: keep a relational cache of GitHub repository state in sync."""
