"""
AlphaGroove: intraday pattern research.

Scans minute bars for entry patterns, optionally screens each candidate
through a multi-call LLM vote, simulates exits under ordered exit rules and
reports per-direction performance.
"""

__version__ = "0.1.0"
