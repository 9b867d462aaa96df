"""
Configuration, database and error types shared by every feature.
"""
