"""Click command modules registered on the ``trellis`` group in cli.py."""
