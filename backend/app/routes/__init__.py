# backend/app/routes/__init__.py
"""HTTP routes. Application endpoints are versioned under v1/."""
