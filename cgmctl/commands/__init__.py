"""CLI commands for cgmctl."""
