"""
HTTP surface: DeFi transaction, recovery and price routes.
"""
