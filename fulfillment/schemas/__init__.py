"""
Fulfillment API schemas
"""
