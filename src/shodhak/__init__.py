"""
Shodhak - conversational research assistant with tiered session memory.
"""

__version__ = "0.1.0"
