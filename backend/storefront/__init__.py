"""Application package for the storefront backend.

The package exposes the models, repositories and services used by the
FastAPI application in `storefront.main`: a public product catalog, a
per-user shopping basket and a moderator area for orders, products and
product photos.
"""
