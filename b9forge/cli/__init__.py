"""b9forge CLI: Typer-based command-line interface.

Provides the ``b9forge`` command with subcommands for listing, pulling,
pushing and pruning shared images, managing remote repositories, and
building images through the rule engine.

All output uses Rich for formatted terminal display.
"""
