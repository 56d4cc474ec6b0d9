from .speakerdeck_fetcher import SpeakerDeckFetcher, normalize_username

__all__ = ["SpeakerDeckFetcher", "normalize_username"]
