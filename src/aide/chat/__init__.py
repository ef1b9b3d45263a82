"""Conversation data model and mention parsing."""
