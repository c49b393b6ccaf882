"""pinforge CLI — Typer-based command-line interface.

Provides the ``pinforge`` command with subcommands for building the recipe,
entering a shell with the result, refreshing pins, simulating CI runs and
inspecting the run ledger and binary cache.

All output uses Rich for formatted terminal display.
"""
