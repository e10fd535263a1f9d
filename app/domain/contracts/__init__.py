"""
Contracts Domain

Contract lifecycle (draft -> sent -> signed -> paid -> completed, or
cancelled), signing links, dual-party signatures and finalization.
"""
