"""Authentication.

Learn: Bearer JWTs are the only credential. The same verify_token()
guards HTTP routes (via FastAPI dependencies) and the WebSocket
handshake, so both surfaces share one signature/expiry rule.
"""
