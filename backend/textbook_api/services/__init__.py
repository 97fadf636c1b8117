# Services package init
"""
Textbook API — Services Layer
==============================

What:  Business logic between the routes (HTTP) and the database.

Service Inventory:
    - AuthService:          accounts, sessions, password reset; the production SessionVerifier
    - ProfileService:       profile lookup and partial upsert
    - personalize_content:  deterministic chapter rewriting from a profile

Services take the Database handle explicitly and never touch Request or
Response objects, except AuthService's cookie helpers.
"""
