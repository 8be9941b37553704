"""
Knowledge gateway: rate-limited dispatch, sessions, streaming relay and
intent routing in front of a generative-AI retrieval backend.
"""
