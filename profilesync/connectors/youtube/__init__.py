from .youtube_fetcher import YouTubeFetcher

__all__ = ["YouTubeFetcher"]
