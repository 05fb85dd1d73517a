"""Core module - pattern detection, family records, the session pipeline and the report cache."""
