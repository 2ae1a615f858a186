"""Cody: quota-gated dispatch and conversational memory for chat bots."""

__version__ = "0.1.0"
