"""Command line interface modules.

This package provides the command-line tools for:
- Starting and stopping the relay
- Showing the live connection dashboard
- Listing the network interfaces clients can use

The commands own the relay engine through its callbacks and never reach into
its internals.
"""
