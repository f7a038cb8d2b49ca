"""
Web boundary for the Shopify sync engine.
"""
