"""Research chat client and UI telemetry capture."""
