"""keystore/ -- Issuance, encrypted storage, and validation of digital keys.

Layer rule: keystore/ imports from core/ and audit/ only. It knows nothing
about sessions; gate/ subscribes to revocations through a listener.
"""
