"""Authentication module (username/password accounts + access tokens).

Services:
    - AccountService: registration and login against the user directory.
    - TokenService: HS256 access-token issuance and verification.
"""
