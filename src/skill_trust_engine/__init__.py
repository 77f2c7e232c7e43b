"""Skill trust engine: content scanning, trust tiers, and quarantine review for agent skills."""

__version__ = "0.1.0"
