"""Abuse detection and risk scoring in front of a gated operation."""
