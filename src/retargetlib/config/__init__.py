"""Engine configuration constants."""
