"""
HTTP API serving polygon crawls and cached results.
"""
