"""
depthcrawl

A bounded-depth, multi-agent web crawler with a shared visited set.
"""

__version__ = "1.0.0"
__description__ = "Bounded-depth multi-agent web crawler with cross-agent URL deduplication"
