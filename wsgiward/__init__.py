"""
wsgiward - secrets staging and service lifecycle for WSGI applications.

Validates declared applications, stages each one's secrets file into a
private runtime directory and builds sandboxed, supervisor-ready service
descriptors. A CLI and a read-only REST API sit on top.
"""

__version__ = "0.1.0"
