"""
Subscription tracker backend.

This package provides a FastAPI application that stores subscription
records and fans out Web Push notifications to registered browsers when
those records change or fall due.
"""
