"""First notice of loss intake and triage for auto insurance claims."""

__version__ = "0.1.0"
