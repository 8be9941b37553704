"""
Gateway services.

Each subpackage owns one concern (dispatch, sessions, sources, routing,
streaming, upstream); ``chat`` wires them together per request.
"""
