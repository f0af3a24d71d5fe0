"""
Outbound HTTP for offline downloads.
"""
