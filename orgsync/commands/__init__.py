"""Command implementations behind the ``orgsync`` CLI."""
