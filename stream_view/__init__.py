"""
Stream View - live, bounded view of a tabular dataset fed by a WebSocket stream.

Architecture:
- datafeed/: WebSocket session, delta decoding and the authoritative table
- engine/: Derived views (windowed series projection, update signals)
- ui/: Live table + series view (Textual TUI)
"""

__version__ = "0.1.0"
