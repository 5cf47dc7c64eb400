"""
Domain services: billing, credentials, generation and publishing
"""
