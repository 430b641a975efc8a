"""Shared domain library for the GRC approval workflow engine."""
