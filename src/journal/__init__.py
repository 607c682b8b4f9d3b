"""Append-only JSONL journal of market activity."""

from journal.writer import JournalWriter

__all__ = ["JournalWriter"]
