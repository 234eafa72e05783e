from world_tavern.lorebook.keywords import keyword_matches
from world_tavern.lorebook.retriever import RetrievalResult, lorebook_budget, retrieve

__all__ = ["RetrievalResult", "keyword_matches", "lorebook_budget", "retrieve"]
