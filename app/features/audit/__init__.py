"""
Audit log feature module.

Append-only record of privileged mutations with an admin read interface.
"""
