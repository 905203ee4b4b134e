"""Site Finance package.

This package is organized by feature modules (finance, sites)
with a thin Flask controller layer and service/repository layers.
"""
