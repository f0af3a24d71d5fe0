"""
Core business logic for storage browsing.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
Snowflake or httpx. Infrastructure clients are passed in through the
protocols defined here.
"""
