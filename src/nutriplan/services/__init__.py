"""Services layer.

Account and session flows, practice records and notification delivery.
"""
