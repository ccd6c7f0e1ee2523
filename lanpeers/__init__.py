"""lanpeers: local-network peer discovery over multicast DNS.

This package lets a peer-to-peer host advertise itself on the local
multicast domain and find other peers of the same service without any
rendezvous server. Discovered peers are reported to registered watchers.
"""
