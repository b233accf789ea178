"""
Revenue attribution: immutable partner attribution events, per-partner
settlements and per-transaction commission splits.
"""
