from .github_fetcher import GitHubFetcher

__all__ = ["GitHubFetcher"]
