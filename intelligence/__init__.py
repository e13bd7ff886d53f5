"""Conversation intelligence: local intent matching, AI extraction and merge."""
