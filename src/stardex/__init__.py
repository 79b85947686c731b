"""stardex: one canonical store for starred and bookmarked GitHub repositories."""

__version__ = "0.1.0"
