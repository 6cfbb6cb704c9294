"""
Core app for srpwire: ESI access, service tokens and the pipeline lease.
"""
