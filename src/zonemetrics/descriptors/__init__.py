"""Static metric descriptor tables, one module per data source family."""

from zonemetrics.descriptors import kstat, misc, ntp

__all__ = ["kstat", "misc", "ntp"]
