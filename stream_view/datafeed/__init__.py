"""Transport, decoding and table reconciliation."""
