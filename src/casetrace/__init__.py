"""casetrace: resumable six-step case analysis runs."""

__version__ = "0.1.0"
