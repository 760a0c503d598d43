"""Text normalization, lexicon, intent detection and anchor planning."""
