"""Capacity, risk and weekly planning rules."""
