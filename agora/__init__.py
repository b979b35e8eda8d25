"""
Agora - Server Package
========================
Session-gated web server relaying a live product catalog and a chat room.

Architecture:
    main.py         -> FastAPI app creation, lifespan, exception handling
    auth.py         -> Registration, login, server-side sessions
    routes.py       -> Page and data endpoints
    websocket.py    -> WebSocket peers and the receive loop
    hub.py          -> Realtime hub: live peers, products, persistence, broadcast
    events.py       -> Realtime event models
    credentials.py  -> Credential store (memory / MongoDB)
    message_log.py  -> Chat message log (memory / MongoDB)
    catalog_log.py  -> Product log (memory / SQL)
    storage.py      -> Store construction and startup checks
    config.py       -> Read/write config.yaml and .env
    errors.py       -> Error taxonomy
"""
