"""
Utilities package for Timegate
"""
