"""
plantree test suite.

- helpers.py: store factory, sample plan builder and tool capture
"""
