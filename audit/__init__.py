"""audit/ -- Security audit log for KeyGate.

Layer rule: audit/ imports only from core/ plus stdlib. keystore/ and gate/
import from audit/, not the other way around.
"""
