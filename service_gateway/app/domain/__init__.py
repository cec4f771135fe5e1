"""
Domain helpers for the Gateway: client identity and backend health.
"""
