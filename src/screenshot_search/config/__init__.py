"""Configuration for Screenshot Search."""
