"""Page hit counter service: Redis-backed counts and rankings served as SVG badges and graphs."""

__version__ = "1.0.0"