"""
Ediens Backend — Services Layer
=================================

Service Inventory:
    - claim_state:     pure claim transition table and guards
    - reservations:    post/user side effects of claim transitions
    - ClaimService:    transactional, retried claim operations
    - PostService:     food post CRUD, search, nearby, trending, expiry
    - AuthService:     bcrypt passwords, JWT access tokens, register/login
    - UserService:     profiles, stats, leaderboard
    - MessageService:  direct messages
    - FileService:     image validation, resizing and storage
    - NotificationBus: in-process event relay to WebSocket clients
    - ExpirySweeper:   periodic expiry of overdue claims and posts
"""
