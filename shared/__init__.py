"""Shared utilities, models and configuration for the analysis services."""
