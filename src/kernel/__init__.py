"""
Stable Kernel Layer

Credential issuance and session lifecycle:
- Identity Core (principals, roles, password hashing)
- Token issuance and the refresh token ledger
- One-time reset codes

Architectural invariants:
- At most one active successor per refresh token
- At most one redeemable reset code per principal
- Reset codes are consumed at most once
"""
