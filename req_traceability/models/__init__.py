"""Models — enums and record schemas."""
