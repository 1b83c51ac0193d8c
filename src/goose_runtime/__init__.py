"""
goose-runtime - an agent runtime with tools, planning and extensions.
"""

__version__ = "0.1.0"
