"""ClipCards: video to Anki sentence-card decks."""

__version__ = "0.1.0"
