"""Muesli: voice memos and notes, organized into folders and synthesized by Gemini."""

__version__ = "0.3.0"
