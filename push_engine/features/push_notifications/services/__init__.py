"""
Push notification services: credentials, gateway, audience, content and dispatch.
"""
