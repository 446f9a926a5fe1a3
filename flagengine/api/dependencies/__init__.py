"""
Request dependencies.
"""
