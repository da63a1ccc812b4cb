from .store import MemoryStore
from .summaries import SummaryPolicy, extract_summary_notes, merge_summary_notes

__all__ = ["MemoryStore", "SummaryPolicy", "extract_summary_notes", "merge_summary_notes"]
