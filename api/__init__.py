"""HTTP API for the trust-check service"""
