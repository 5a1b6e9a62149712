"""Monitoring provider seam, health signal and status report."""
