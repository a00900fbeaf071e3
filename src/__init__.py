"""Recall review scheduler."""
