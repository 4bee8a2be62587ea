"""LeadSync: lead list synchronization and mutation engine."""

__version__ = "1.0.0"
