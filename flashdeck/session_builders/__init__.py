"""
Session builder primitives: pool models and pool utilities.
"""
