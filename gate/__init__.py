"""gate/ -- The lock/unlock session state machine.

Layer rule: gate/ imports from core/, audit/, and keystore/. Nothing imports
from gate/ except main.py and tests.
"""
