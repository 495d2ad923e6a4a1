"""auth-sanity: conformance probe for SMART / OAuth 2.0 authorization servers.

Runs ordered conformance sequences (discovery, dynamic client registration,
transport security) against a live server, threading credentials and
endpoints discovered by earlier sequences into later ones.  TLS checks pin
the handshake to one protocol version at a time.
"""

__version__ = "0.1.0"
