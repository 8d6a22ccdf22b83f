"""The GitHub webhook delivery endpoint."""
