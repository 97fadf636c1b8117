# Routes package init
"""
Textbook API — Routes Package
==============================

Route Inventory:
    - health.py:       GET  /health, GET /
    - auth.py:         POST /auth/sign-up/email, /auth/sign-in/email, /auth/sign-out,
                       /auth/forget-password, /auth/reset-password; GET /auth/session
    - profile.py:      GET|PUT /user/profile           (session required)
    - personalize.py:  POST /personalize               (session required)
    - chat.py:         POST /chat                      (session required)

Routes stay thin: parse the request, call a service, shape the response.
"""
