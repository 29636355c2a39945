"""
junkrescue

Periodically inspects the Junk folder of one or more IMAP accounts,
checks every junk message against configurable allow-rules and moves
the legitimate ones back to the Inbox. Accounts can be reached directly
or through an HTTPS, SOCKS4 or SOCKS5 proxy.
"""

__version__ = "1.0.0"
__app_name__ = "junkrescue"
