"""frontend/ -- Async client for the hosted provider's frontend sign-in API.

Holds the handoff bridge and the retry-on-provisioning interceptor. Talks to
the hosted provider and to AuthBridge only over HTTP; imports nothing from
auth/, migration/, api/ or web/.
"""
