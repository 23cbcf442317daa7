"""
Fulfillment Business Services
"""
