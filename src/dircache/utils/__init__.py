"""Utility modules for dircache."""
