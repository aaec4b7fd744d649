"""Command-line helpers shared by the recorder entry points."""
