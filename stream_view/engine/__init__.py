"""Projection and signal computations over the live table."""
