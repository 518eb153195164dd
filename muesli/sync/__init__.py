from muesli.sync.store import EntityStore

__all__ = ["EntityStore"]
