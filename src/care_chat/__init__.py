"""Conversational registration assistant for a caregiving marketplace."""
