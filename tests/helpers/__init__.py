"""Test helpers shared by unit and feature tests."""
