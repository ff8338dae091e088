"""TaskGate utilities."""
