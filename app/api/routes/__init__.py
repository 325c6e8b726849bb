from . import invent, progress, scrape

__all__ = ["invent", "progress", "scrape"]
