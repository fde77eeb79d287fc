"""termlink -- Run a command-line application locally or as a remote session.

A client attaches its real terminal to a server-hosted instance of the same
CLI over a persistent WebSocket. Keystrokes go in, rendered output comes back,
and a small in-band control protocol (echo toggles, explicit command
execution, forwarded keypresses) rides inside the same stream.
"""

__version__ = "0.1.0"
