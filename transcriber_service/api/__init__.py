"""
HTTP ingress - Flask app and event-stream transport
"""
