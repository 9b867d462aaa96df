"""
Invitation feature module.

Tokenized, single-use invitations that turn an email address into an
organization member with a given role.
"""
