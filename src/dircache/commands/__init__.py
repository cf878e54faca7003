"""Command modules for the dircache CLI."""
