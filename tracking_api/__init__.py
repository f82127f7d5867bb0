"""Tutor chat gateway with interaction and telemetry logging."""
