"""Operator endpoints: sync job progress and the triage snapshot."""
