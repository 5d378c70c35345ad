from .memory import InMemoryLocalState

__all__ = ["InMemoryLocalState"]
