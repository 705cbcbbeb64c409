"""
Ediens Backend — API Routes Package
=====================================

Route Inventory:
    - auth.py:           /api/auth/*       register, login, profile, refresh
    - posts.py:          /api/posts/*      food posts, search, images
    - claims.py:         /api/claims/*     claim lifecycle
    - messages.py:       /api/messages/*   direct messages
    - users.py:          /api/users/*      public profiles, stats, leaderboard
    - files.py:          /uploads/{path}   stored images
    - notifications.py:  /ws/notifications live events (WebSocket)
    - health.py:         /health           service health check

Routes stay thin: parse the request, call a service, shape the response.
"""
