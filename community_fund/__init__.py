"""Community fund: member loans, settlements and monthly contributions."""

__version__ = "0.1.0"
