"""fxfer: point-to-point file transfer over TCP

The package keeps the pieces a transfer is made of apart:
- length-prefixed framing of integers and blobs
- a client state machine that pushes a batch of files
- a server accept loop that hands each connection to its own receive machine

Every state machine is an enum of states plus a transition table, so the
control flow can be tested without touching a socket.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
