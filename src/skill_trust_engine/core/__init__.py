"""Core: scanning, classification, quarantine services, and domain types."""
