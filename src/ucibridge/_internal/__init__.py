"""Internal APIs for ucibridge. Not part of the public API."""
