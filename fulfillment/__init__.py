"""
Order fulfillment engine: allocation, wave planning and pick execution
"""

__version__ = "1.0.0"
