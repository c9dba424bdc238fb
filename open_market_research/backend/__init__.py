"""
Backend package for Open Market Research.

Contains the model fallback chat client, the research structurer,
submission rules, permissions, database operations and the HTTP API.
"""
