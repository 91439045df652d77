"""Request instrumentation and daily log analysis."""
