"""Setup sheet scheduling: templates, weekly setups and conflict-checked assignments."""

__version__ = "0.1.0"
