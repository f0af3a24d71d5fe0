"""
Snowflake persistence for storage configurations.
"""
