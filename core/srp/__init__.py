"""
Ship replacement program: mail intake, decisions, notification queue and
wallet reconciliation.
"""
