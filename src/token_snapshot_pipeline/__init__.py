"""Token Snapshot Pipeline - adaptive market snapshot collection and dataset auditing."""

__version__ = "0.1.0"
